from .setup import setup_observability
from .metrics import (
    fulfillment_orders_total,
    fulfillment_reservation_failures_total,
    fulfillment_status_transitions_total,
    fulfillment_cascade_rollups_total,
    fulfillment_operation_duration_seconds
)
