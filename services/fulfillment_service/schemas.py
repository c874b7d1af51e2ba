from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

# Input models stay loose on purpose: amounts, enums and ownership are
# checked by the orchestrator so HTTP and in-process callers get the same errors.


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int
    unit_price: int # minor currency units


class DeliveryEstimate(BaseModel):
    vendor_id: int
    delivery_fee: int
    estimated_days: int = 0


class OrderCreate(BaseModel):
    items: List[OrderItemIn]
    destination_address_id: int
    origin_address_id: Optional[int] = None
    payment_method: str
    delivery_estimates: List[DeliveryEstimate]


class SubOrderStatusUpdate(BaseModel):
    status: str


class ShipmentCreate(BaseModel):
    driver_id: Optional[int] = None
    priority: Optional[str] = None
    delivery_notes: Optional[str] = None


class ShipmentUpdate(BaseModel):
    status: Optional[str] = None
    driver_id: Optional[int] = None
    priority: Optional[str] = None
    delivery_notes: Optional[str] = None


class DriverAssign(BaseModel):
    driver_id: int


class TrackingCreate(BaseModel):
    latitude: float
    longitude: float


class PaymentConfirm(BaseModel):
    status: str
    transaction_id: Optional[str] = None


class LineItemResponse(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: int

    class Config:
        from_attributes = True


class ShipmentResponse(BaseModel):
    id: int
    sub_order_id: int
    driver_id: Optional[int] = None
    origin_address_id: Optional[int] = None
    status: str
    last_known_status: Optional[str] = None
    priority: str
    delivery_notes: Optional[str] = None

    class Config:
        from_attributes = True


class PlatformFeeResponse(BaseModel):
    store_fee: int
    delivery_fee: int

    class Config:
        from_attributes = True


class StoreCommissionResponse(BaseModel):
    commission_rate: int
    commission_amount: int

    class Config:
        from_attributes = True


class SubOrderResponse(BaseModel):
    id: int
    vendor_id: int
    subtotal: int
    delivery_fee: int
    total: int
    total_weight: int
    status: str
    line_items: List[LineItemResponse] = []
    shipments: List[ShipmentResponse] = []
    platform_fee: Optional[PlatformFeeResponse] = None
    commission: Optional[StoreCommissionResponse] = None

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: int
    amount: int
    method: str
    status: str
    transaction_id: Optional[str] = None

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    user_id: int
    status: str
    destination_address_id: int
    origin_address_id: Optional[int] = None
    estimated_delivery_date: Optional[datetime] = None
    sub_orders: List[SubOrderResponse] = []
    payment: Optional[PaymentResponse] = None

    class Config:
        from_attributes = True


class TrackingResponse(BaseModel):
    id: int
    shipment_id: int
    latitude: float
    longitude: float
    recorded_at: datetime

    class Config:
        from_attributes = True


class InventoryResponse(BaseModel):
    product_id: int
    level: int
    reserved: int
    available: int

    class Config:
        from_attributes = True
