from prometheus_client import Counter, Histogram

# Business Metrics (emitted only after the owning transaction commits)
fulfillment_orders_total = Counter(
    "fulfillment_orders_total",
    "Total order creation attempts",
    ["outcome"] # Labels: 'created', 'failed'
)

fulfillment_reservation_failures_total = Counter(
    "fulfillment_reservation_failures_total",
    "Order creations rejected because a reservation exceeded available stock"
)

fulfillment_status_transitions_total = Counter(
    "fulfillment_status_transitions_total",
    "Committed status transitions",
    ["entity", "status"] # entity: 'order', 'sub_order', 'shipment', 'payment'
)

fulfillment_cascade_rollups_total = Counter(
    "fulfillment_cascade_rollups_total",
    "Orders moved to a terminal status by the status cascade",
    ["policy", "status"]
)

fulfillment_operation_duration_seconds = Histogram(
    "fulfillment_operation_duration_seconds",
    "Orchestrator operation duration in seconds",
    ["operation"]
)
