from fastapi import APIRouter, Depends, Request
from shared.config.database import AsyncSessionLocal
from shared.config.settings import CASCADE_POLICY, CREATE_ORDER_RATE_LIMIT
from shared.security import Principal, get_current_principal, limiter
from .constants import CascadePolicy
from .exceptions import validate_enum
from .schemas import (
    DriverAssign,
    InventoryResponse,
    OrderCreate,
    OrderResponse,
    PaymentConfirm,
    PaymentResponse,
    ShipmentCreate,
    ShipmentResponse,
    ShipmentUpdate,
    SubOrderResponse,
    SubOrderStatusUpdate,
    TrackingCreate,
    TrackingResponse,
)
from .service import FulfillmentOrchestrator

router = APIRouter(dependencies=[Depends(get_current_principal)])
public_router = APIRouter()  # Health check stays reachable without a token

_orchestrator = FulfillmentOrchestrator(
    AsyncSessionLocal,
    cascade_policy=validate_enum(CascadePolicy, CASCADE_POLICY, "CASCADE_POLICY"),
)


def get_orchestrator() -> FulfillmentOrchestrator:
    return _orchestrator


@public_router.get("/health")
async def health_check():
    return {"service": "fulfillment", "status": "running"}

# --- Orders ---

@router.post("/orders", response_model=OrderResponse, status_code=201)
@limiter.limit(CREATE_ORDER_RATE_LIMIT)
async def create_order(
    request: Request,  # slowapi reads the caller key from the request
    payload: OrderCreate,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.create_order(principal, payload)

@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_order(principal, order_id)

@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.cancel_order(principal, order_id)

@router.post("/orders/{order_id}/payment", response_model=PaymentResponse)
async def confirm_payment(
    order_id: int,
    payload: PaymentConfirm,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.confirm_payment(principal, order_id, payload.status, payload.transaction_id)

# --- Sub-orders ---

@router.patch("/sub-orders/{sub_order_id}/status", response_model=SubOrderResponse)
async def update_sub_order_status(
    sub_order_id: int,
    payload: SubOrderStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.update_sub_order_status(principal, sub_order_id, payload.status)

@router.post("/sub-orders/{sub_order_id}/shipments", response_model=ShipmentResponse, status_code=201)
async def create_shipment(
    sub_order_id: int,
    payload: ShipmentCreate,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.create_shipment(
        principal,
        sub_order_id,
        driver_id=payload.driver_id,
        priority=payload.priority,
        notes=payload.delivery_notes,
    )

# --- Shipments ---

@router.patch("/shipments/{shipment_id}", response_model=ShipmentResponse)
async def update_shipment(
    shipment_id: int,
    payload: ShipmentUpdate,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.update_shipment(principal, shipment_id, payload)

@router.post("/shipments/{shipment_id}/driver", response_model=ShipmentResponse)
async def assign_driver(
    shipment_id: int,
    payload: DriverAssign,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.assign_driver(principal, shipment_id, payload.driver_id)

@router.post("/shipments/{shipment_id}/tracking", response_model=TrackingResponse, status_code=201)
async def add_tracking_point(
    shipment_id: int,
    payload: TrackingCreate,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.add_tracking_point(principal, shipment_id, payload.latitude, payload.longitude)

# --- Inventory ---

@router.get("/inventory/{product_id}", response_model=InventoryResponse)
async def get_inventory(
    product_id: int,
    principal: Principal = Depends(get_current_principal),
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_inventory(principal, product_id)
