import enum


class OrderStatus(str, enum.Enum):
    """Shared by orders and sub-orders."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    # Only produced by the strict cascade policy
    PARTIALLY_FULFILLED = "partially_fulfilled"


class ShipmentStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    FAILED = "failed"


class ShipmentPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    ORANGE_MONEY = "orange_money"
    MOBILE_MONEY = "mobile_money"
    CASH_ON_DELIVERY = "cash_on_delivery"


class CascadePolicy(str, enum.Enum):
    MIRROR = "mirror"
    STRICT = "strict"


ACTIVE_ORDER_STATUSES = (OrderStatus.PENDING.value, OrderStatus.IN_PROGRESS.value)
TERMINAL_ORDER_STATUSES = (
    OrderStatus.DELIVERED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.PARTIALLY_FULFILLED.value,
)
TERMINAL_SHIPMENT_STATUSES = (ShipmentStatus.DELIVERED.value, ShipmentStatus.FAILED.value)

# Statuses a vendor may set on a sub-order, keyed by the current status
SUB_ORDER_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.IN_PROGRESS.value, OrderStatus.CANCELLED.value},
    OrderStatus.IN_PROGRESS.value: {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value},
}

SHIPMENT_TRANSITIONS = {
    ShipmentStatus.PENDING.value: {
        ShipmentStatus.IN_PROGRESS.value,
        ShipmentStatus.DELIVERED.value,
        ShipmentStatus.FAILED.value,
    },
    ShipmentStatus.IN_PROGRESS.value: {ShipmentStatus.DELIVERED.value, ShipmentStatus.FAILED.value},
}

# Terminal shipment outcome -> sub-order status
SHIPMENT_OUTCOME_TO_SUB_ORDER = {
    ShipmentStatus.DELIVERED.value: OrderStatus.DELIVERED.value,
    ShipmentStatus.FAILED.value: OrderStatus.CANCELLED.value,
}

# Marketplace take per sub-order, as a percentage of the item subtotal
PLATFORM_FEE_PERCENT = 5
STORE_COMMISSION_PERCENT = 10
