from collections import OrderedDict
from datetime import timedelta
from typing import Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from shared.observability import (
    fulfillment_operation_duration_seconds,
    fulfillment_orders_total,
    fulfillment_reservation_failures_total,
)
from shared.security.principal import Principal, Role

from .constants import (
    ACTIVE_ORDER_STATUSES,
    PLATFORM_FEE_PERCENT,
    SHIPMENT_TRANSITIONS,
    STORE_COMMISSION_PERCENT,
    SUB_ORDER_TRANSITIONS,
    TERMINAL_ORDER_STATUSES,
    TERMINAL_SHIPMENT_STATUSES,
    CascadePolicy,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShipmentPriority,
    ShipmentStatus,
)
from .exceptions import (
    AlreadyExists,
    FulfillmentError,
    InsufficientStock,
    NotFound,
    ValidationError,
    validate_enum,
)
from .models import (
    Driver,
    InventoryRecord,
    LineItem,
    Order,
    Payment,
    PlatformFee,
    Shipment,
    StoreCommission,
    SubOrder,
    TrackingPoint,
    Vendor,
    utcnow,
)
from .repository import FulfillmentRepository
from .schemas import OrderCreate, OrderItemIn, ShipmentUpdate
from .unit_of_work import UnitOfWork

logger = structlog.get_logger(__name__)


def _percent_of(amount: int, percent: int) -> int:
    """Percentage of a minor-unit amount, rounded half up."""
    return (amount * percent + 50) // 100


class FulfillmentOrchestrator:
    """
    In-process API of the fulfillment core.

    Every public method takes the acting ``Principal`` explicitly and runs in
    exactly one ``UnitOfWork``: authorization, ledger updates, aggregate
    writes and history/notification/audit rows commit together or not at all.
    """

    def __init__(self, session_factory: async_sessionmaker, cascade_policy: CascadePolicy = CascadePolicy.MIRROR):
        self.session_factory = session_factory
        self.cascade_policy = CascadePolicy(cascade_policy)

    def _uow(self, operation: str, principal: Principal) -> UnitOfWork:
        return UnitOfWork(self.session_factory, operation, actor_id=principal.id, policy=self.cascade_policy)

    # --- Orders ---

    async def create_order(self, principal: Principal, data: OrderCreate) -> Order:
        with fulfillment_operation_duration_seconds.labels(operation="create_order").time():
            try:
                async with self._uow("create_order", principal) as uow:
                    order = await self._create_order(uow, principal, data)
            except InsufficientStock as e:
                fulfillment_reservation_failures_total.inc()
                fulfillment_orders_total.labels(outcome="failed").inc()
                logger.warning("order_rejected", user_id=principal.id, reason=e.code, **e.details)
                raise
            except FulfillmentError as e:
                fulfillment_orders_total.labels(outcome="failed").inc()
                logger.warning("order_rejected", user_id=principal.id, reason=e.code, message=e.message)
                raise

        fulfillment_orders_total.labels(outcome="created").inc()
        logger.info(
            "order_created",
            order_id=order.id,
            user_id=principal.id,
            sub_orders=len(order.sub_orders),
            amount=order.payment.amount,
        )
        return order

    async def _create_order(self, uow: UnitOfWork, principal: Principal, data: OrderCreate) -> Order:
        db = uow.db
        await uow.guard.require_role(principal, [Role.CUSTOMER])
        self._validate_order_input(data)
        method = validate_enum(PaymentMethod, data.payment_method, "payment_method")

        await uow.guard.require_address_owner(principal.id, data.destination_address_id)
        if data.origin_address_id is not None:
            if await FulfillmentRepository.get_address(db, data.origin_address_id) is None:
                raise NotFound(f"Address {data.origin_address_id} not found", {"address_id": data.origin_address_id})

        products = {p.id: p for p in await FulfillmentRepository.get_products(db, [i.product_id for i in data.items])}
        groups: Dict[int, List[OrderItemIn]] = OrderedDict()
        for item in data.items:
            product = products.get(item.product_id)
            if product is None:
                raise NotFound(f"Product {item.product_id} not found", {"product_id": item.product_id})
            groups.setdefault(product.vendor_id, []).append(item)

        estimates = {e.vendor_id: e for e in data.delivery_estimates}
        missing = [vendor_id for vendor_id in groups if vendor_id not in estimates]
        if missing:
            raise ValidationError(
                "A delivery estimate is required for every vendor in the order",
                {"field": "delivery_estimates", "missing_vendor_ids": missing},
            )

        # All-or-nothing: a failing reservation aborts the unit of work
        for item in data.items:
            await uow.ledger.reserve(item.product_id, item.quantity)

        max_days = max(estimates[vendor_id].estimated_days for vendor_id in groups)
        order = Order(
            user_id=principal.id,
            origin_address_id=data.origin_address_id,
            destination_address_id=data.destination_address_id,
            status=OrderStatus.PENDING.value,
            estimated_delivery_date=utcnow() + timedelta(days=max_days),
            sub_orders=[],
        )
        for vendor_id, items in groups.items():
            subtotal = sum(i.unit_price * i.quantity for i in items)
            fee = estimates[vendor_id].delivery_fee
            order.sub_orders.append(SubOrder(
                vendor_id=vendor_id,
                subtotal=subtotal,
                delivery_fee=fee,
                total=subtotal + fee,
                total_weight=sum(products[i.product_id].weight * i.quantity for i in items),
                status=OrderStatus.PENDING.value,
                line_items=[],
                shipments=[],
                platform_fee=PlatformFee(
                    store_fee=_percent_of(subtotal, PLATFORM_FEE_PERCENT),
                    delivery_fee=fee,
                ),
                commission=StoreCommission(
                    vendor_id=vendor_id,
                    commission_rate=STORE_COMMISSION_PERCENT,
                    commission_amount=_percent_of(subtotal, STORE_COMMISSION_PERCENT),
                ),
            ))
        order.payment = Payment(
            amount=sum(s.total for s in order.sub_orders),
            method=method.value,
            status=PaymentStatus.PENDING.value,
        )
        db.add(order)
        await db.flush()

        for sub_order, items in zip(order.sub_orders, groups.values()):
            for item in items:
                sub_order.line_items.append(LineItem(
                    order_id=order.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                ))
        await db.flush()

        uow.effects.record_status(order.id, order.status)
        uow.effects.notify(principal.id, f"Order #{order.id} has been placed", type="order_created", order_id=order.id)
        for sub_order in order.sub_orders:
            vendor = await FulfillmentRepository.get_vendor(db, sub_order.vendor_id)
            uow.effects.notify(
                vendor.owner_user_id,
                f"New sub-order #{sub_order.id} for order #{order.id}",
                type="sub_order_created",
                order_id=order.id,
                priority="high",
            )
        uow.effects.audit(
            "order_created",
            order_id=order.id,
            sub_order_ids=[s.id for s in order.sub_orders],
            amount=order.payment.amount,
            payment_method=method.value,
        )
        return order

    @staticmethod
    def _validate_order_input(data: OrderCreate) -> None:
        if not data.items:
            raise ValidationError("An order needs at least one item", {"field": "items"})
        for item in data.items:
            if item.quantity <= 0:
                raise ValidationError(
                    f"Quantity must be positive for product {item.product_id}",
                    {"field": "quantity", "product_id": item.product_id, "value": item.quantity},
                )
            if item.unit_price < 0:
                raise ValidationError(
                    f"Unit price cannot be negative for product {item.product_id}",
                    {"field": "unit_price", "product_id": item.product_id, "value": item.unit_price},
                )
        for estimate in data.delivery_estimates:
            if estimate.delivery_fee < 0:
                raise ValidationError(
                    f"Delivery fee cannot be negative for vendor {estimate.vendor_id}",
                    {"field": "delivery_fee", "vendor_id": estimate.vendor_id, "value": estimate.delivery_fee},
                )
            if estimate.estimated_days < 0:
                raise ValidationError(
                    f"Estimated days cannot be negative for vendor {estimate.vendor_id}",
                    {"field": "estimated_days", "vendor_id": estimate.vendor_id, "value": estimate.estimated_days},
                )

    async def cancel_order(self, principal: Principal, order_id: int) -> Order:
        with fulfillment_operation_duration_seconds.labels(operation="cancel_order").time():
            async with self._uow("cancel_order", principal) as uow:
                await uow.guard.require_role(principal, [Role.CUSTOMER])
                order = await self._get_order(uow, order_id, for_update=True)
                uow.guard.require_order_owner(principal, order)

                if order.status == OrderStatus.CANCELLED.value:
                    raise AlreadyExists(f"Order {order_id} is already cancelled", {"order_id": order_id})
                if order.status in TERMINAL_ORDER_STATUSES:
                    raise ValidationError(
                        f"Order {order_id} is {order.status} and can no longer be cancelled",
                        {"order_id": order_id, "status": order.status},
                    )

                released = [
                    {"product_id": item.product_id, "quantity": item.quantity}
                    for sub_order in order.sub_orders
                    if sub_order.status in ACTIVE_ORDER_STATUSES
                    for item in sub_order.line_items
                ]
                await uow.cascade.cancel_order_tree(order)
                uow.effects.audit("order_cancelled", order_id=order.id, released=released)

        logger.info("order_cancelled", order_id=order.id, user_id=principal.id)
        return order

    async def get_order(self, principal: Principal, order_id: int) -> Order:
        async with self._uow("get_order", principal) as uow:
            await uow.guard.require_role(principal, [Role.CUSTOMER, Role.PLATFORM_ADMIN])
            order = await self._get_order(uow, order_id)
            if principal.role != Role.PLATFORM_ADMIN.value:
                uow.guard.require_order_owner(principal, order)
        return order

    async def confirm_payment(
        self,
        principal: Principal,
        order_id: int,
        status: str,
        transaction_id: Optional[str] = None,
    ) -> Payment:
        with fulfillment_operation_duration_seconds.labels(operation="confirm_payment").time():
            async with self._uow("confirm_payment", principal) as uow:
                await uow.guard.require_role(principal, [Role.PLATFORM_ADMIN])
                target = validate_enum(
                    PaymentStatus, status, "status", allowed=[PaymentStatus.PAID, PaymentStatus.FAILED]
                ).value
                order = await self._get_order(uow, order_id, for_update=True)
                payment = order.payment
                if payment is None:
                    raise NotFound(f"No payment found for order {order_id}", {"order_id": order_id})

                if payment.status != PaymentStatus.PENDING.value:
                    if payment.status == target:
                        raise AlreadyExists(
                            f"Payment for order {order_id} is already {target}",
                            {"order_id": order_id, "status": target},
                        )
                    raise ValidationError(
                        f"Payment for order {order_id} is {payment.status} and cannot become {target}",
                        {"order_id": order_id, "status": payment.status, "requested": target},
                    )
                if target == PaymentStatus.PAID.value and order.status not in ACTIVE_ORDER_STATUSES:
                    raise ValidationError(
                        f"Order {order_id} is {order.status}; payment cannot be accepted",
                        {"order_id": order_id, "status": order.status},
                    )

                payment.status = target
                payment.transaction_id = transaction_id or payment.transaction_id
                payment.updated_at = utcnow()
                uow.effects.record_payment(target)

                if target == PaymentStatus.PAID.value:
                    for sub_order in order.sub_orders:
                        if sub_order.status == OrderStatus.PENDING.value:
                            await uow.cascade.advance_sub_order(sub_order)
                    if order.status == OrderStatus.PENDING.value:
                        await uow.cascade.transition_order(order, OrderStatus.IN_PROGRESS.value)
                elif order.status in ACTIVE_ORDER_STATUSES:
                    await uow.cascade.cancel_order_tree(order)

                uow.effects.audit(
                    "payment_confirmed",
                    order_id=order.id,
                    payment_id=payment.id,
                    status=target,
                    transaction_id=payment.transaction_id,
                )

        logger.info("payment_confirmed", order_id=order_id, status=payment.status)
        return payment

    # --- Sub-orders ---

    async def update_sub_order_status(self, principal: Principal, sub_order_id: int, new_status: str) -> SubOrder:
        with fulfillment_operation_duration_seconds.labels(operation="update_sub_order_status").time():
            async with self._uow("update_sub_order_status", principal) as uow:
                vendor = await uow.guard.require_vendor(principal)
                sub_order = await self._get_sub_order(uow, sub_order_id)
                uow.guard.require_sub_order_owner(vendor, sub_order)
                target = validate_enum(
                    OrderStatus,
                    new_status,
                    "status",
                    allowed=[OrderStatus.PENDING, OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED, OrderStatus.CANCELLED],
                ).value

                previous = sub_order.status
                if self._check_transition(SUB_ORDER_TRANSITIONS, TERMINAL_ORDER_STATUSES, "Sub-order", sub_order.id, previous, target):
                    if target == OrderStatus.IN_PROGRESS.value:
                        await uow.cascade.advance_sub_order(sub_order)
                    else:
                        await uow.cascade.settle_sub_order(sub_order, target)
                    await self._notify_customer(
                        uow,
                        sub_order.order_id,
                        f"{vendor.name} updated sub-order #{sub_order.id}: {target.replace('_', ' ')}",
                        "sub_order_status",
                    )
                    uow.effects.audit(
                        "sub_order_status_updated",
                        sub_order_id=sub_order.id,
                        order_id=sub_order.order_id,
                        previous=previous,
                        status=target,
                    )

        logger.info("sub_order_status_updated", sub_order_id=sub_order_id, vendor_id=vendor.id, status=sub_order.status)
        return sub_order

    # --- Shipments ---

    async def create_shipment(
        self,
        principal: Principal,
        sub_order_id: int,
        driver_id: Optional[int] = None,
        priority: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Shipment:
        with fulfillment_operation_duration_seconds.labels(operation="create_shipment").time():
            async with self._uow("create_shipment", principal) as uow:
                vendor = await uow.guard.require_vendor(principal)
                sub_order = await self._get_sub_order(uow, sub_order_id)
                uow.guard.require_sub_order_owner(vendor, sub_order)

                if await FulfillmentRepository.get_active_shipment(uow.db, sub_order.id) is not None:
                    raise AlreadyExists(
                        f"Sub-order {sub_order_id} already has an active shipment",
                        {"sub_order_id": sub_order_id},
                    )
                level = validate_enum(ShipmentPriority, priority or ShipmentPriority.NORMAL.value, "priority")
                driver = None
                if driver_id is not None:
                    driver = await uow.guard.require_vendor_driver(vendor, driver_id)

                shipment = Shipment(
                    sub_order_id=sub_order.id,
                    origin_address_id=vendor.address_id,
                    driver_id=driver.id if driver else None,
                    status=ShipmentStatus.IN_PROGRESS.value if driver else ShipmentStatus.PENDING.value,
                    priority=level.value,
                    delivery_notes=notes,
                )
                sub_order.shipments.append(shipment)
                try:
                    await uow.db.flush()
                except IntegrityError as e:
                    # Lost a race with a concurrent create_shipment on the same sub-order
                    raise AlreadyExists(
                        f"Sub-order {sub_order_id} already has an active shipment",
                        {"sub_order_id": sub_order_id},
                    ) from e

                uow.effects.record_status(sub_order.order_id, shipment.status, sub_order_id=sub_order.id, shipment_id=shipment.id)
                if sub_order.status not in TERMINAL_ORDER_STATUSES:
                    await uow.cascade.advance_sub_order(sub_order)
                if driver is not None:
                    self._notify_driver(uow, driver, shipment, sub_order)
                uow.effects.audit(
                    "shipment_created",
                    shipment_id=shipment.id,
                    sub_order_id=sub_order.id,
                    driver_id=shipment.driver_id,
                    priority=shipment.priority,
                )

        logger.info("shipment_created", shipment_id=shipment.id, sub_order_id=sub_order_id, status=shipment.status)
        return shipment

    async def update_shipment(self, principal: Principal, shipment_id: int, changes: ShipmentUpdate) -> Shipment:
        with fulfillment_operation_duration_seconds.labels(operation="update_shipment").time():
            async with self._uow("update_shipment", principal) as uow:
                shipment, sub_order, vendor = await self._load_managed_shipment(uow, principal, shipment_id)

                target = shipment.status
                requested = changes.status is not None
                if requested:
                    target = validate_enum(ShipmentStatus, changes.status, "status").value
                if changes.priority is not None:
                    shipment.priority = validate_enum(ShipmentPriority, changes.priority, "priority").value
                if changes.delivery_notes is not None:
                    shipment.delivery_notes = changes.delivery_notes

                driver = None
                if changes.driver_id is not None:
                    driver = await self._assign(uow, vendor, shipment, changes.driver_id)
                    if target == ShipmentStatus.PENDING.value:
                        target = ShipmentStatus.IN_PROGRESS.value
                        requested = True

                if requested:
                    await self._move_shipment(uow, shipment, sub_order, target)
                shipment.updated_at = utcnow()
                if driver is not None:
                    self._notify_driver(uow, driver, shipment, sub_order)
                await self._notify_customer(
                    uow, sub_order.order_id, f"Shipment #{shipment.id} is now {shipment.status.replace('_', ' ')}", "shipment_updated"
                )
                uow.effects.audit(
                    "shipment_updated",
                    shipment_id=shipment.id,
                    changes=changes.model_dump(exclude_none=True),
                    status=shipment.status,
                )

        logger.info("shipment_updated", shipment_id=shipment_id, status=shipment.status)
        return shipment

    async def assign_driver(self, principal: Principal, shipment_id: int, driver_id: int) -> Shipment:
        with fulfillment_operation_duration_seconds.labels(operation="assign_driver").time():
            async with self._uow("assign_driver", principal) as uow:
                shipment, sub_order, vendor = await self._load_managed_shipment(uow, principal, shipment_id)
                driver = await self._assign(uow, vendor, shipment, driver_id)
                if shipment.status == ShipmentStatus.PENDING.value:
                    await self._move_shipment(uow, shipment, sub_order, ShipmentStatus.IN_PROGRESS.value)
                shipment.updated_at = utcnow()
                self._notify_driver(uow, driver, shipment, sub_order)
                await self._notify_customer(
                    uow, sub_order.order_id, f"A driver is on the way with shipment #{shipment.id}", "shipment_updated"
                )
                uow.effects.audit("driver_assigned", shipment_id=shipment.id, driver_id=driver.id)

        logger.info("driver_assigned", shipment_id=shipment_id, driver_id=driver_id)
        return shipment

    async def add_tracking_point(self, principal: Principal, shipment_id: int, latitude: float, longitude: float) -> TrackingPoint:
        async with self._uow("add_tracking_point", principal) as uow:
            await uow.guard.require_role(principal, [Role.PLATFORM_ADMIN])
            self._check_coordinate("latitude", latitude, 90)
            self._check_coordinate("longitude", longitude, 180)
            shipment = await FulfillmentRepository.get_shipment(uow.db, shipment_id)
            if shipment is None:
                raise NotFound(f"Shipment {shipment_id} not found", {"shipment_id": shipment_id})

            point = TrackingPoint(shipment_id=shipment.id, latitude=latitude, longitude=longitude)
            uow.db.add(point)
            await uow.db.flush()

            sub_order = await self._get_sub_order(uow, shipment.sub_order_id)
            await self._notify_customer(
                uow, sub_order.order_id, f"Tracking updated for shipment #{shipment.id}", "tracking_added"
            )
            uow.effects.audit(
                "tracking_added",
                shipment_id=shipment.id,
                tracking_point_id=point.id,
                latitude=latitude,
                longitude=longitude,
            )
        return point

    # --- Inventory ---

    async def get_inventory(self, principal: Principal, product_id: int) -> InventoryRecord:
        async with self._uow("get_inventory", principal) as uow:
            await uow.guard.require_role(principal, [Role.VENDOR, Role.PLATFORM_ADMIN])
            product = await FulfillmentRepository.get_product(uow.db, product_id)
            if product is None:
                raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
            if principal.role != Role.PLATFORM_ADMIN.value:
                vendor = await uow.guard.require_vendor(principal)
                uow.guard.require_product_owner(vendor, product)
            record = await uow.ledger.get_record(product_id)
            if record is None:
                raise NotFound(f"No inventory record for product {product_id}", {"product_id": product_id})
        return record

    # --- Helpers ---

    @staticmethod
    def _check_transition(transitions, terminal, entity: str, entity_id: int, current: str, target: str) -> bool:
        """False for a no-op on a non-terminal status, raises for anything illegal."""
        if current == target:
            if current in terminal:
                raise AlreadyExists(
                    f"{entity} {entity_id} is already {current}",
                    {"id": entity_id, "status": current},
                )
            return False
        if target not in transitions.get(current, ()):
            raise ValidationError(
                f"{entity} {entity_id} cannot move from {current} to {target}",
                {"id": entity_id, "status": current, "requested": target},
            )
        return True

    async def _move_shipment(self, uow: UnitOfWork, shipment: Shipment, sub_order: SubOrder, target: str) -> None:
        if not self._check_transition(SHIPMENT_TRANSITIONS, TERMINAL_SHIPMENT_STATUSES, "Shipment", shipment.id, shipment.status, target):
            return
        if shipment.status == ShipmentStatus.PENDING.value and shipment.driver_id is None:
            raise ValidationError(
                f"Shipment {shipment.id} needs a driver before it can leave pending",
                {"id": shipment.id, "requested": target},
            )
        shipment.last_known_status = shipment.status
        shipment.status = target
        shipment.updated_at = utcnow()
        uow.effects.record_status(sub_order.order_id, target, sub_order_id=sub_order.id, shipment_id=shipment.id)

        if target in TERMINAL_SHIPMENT_STATUSES:
            await uow.cascade.on_shipment_terminal(shipment)
        elif sub_order.status == OrderStatus.PENDING.value:
            await uow.cascade.advance_sub_order(sub_order)

    async def _load_managed_shipment(self, uow: UnitOfWork, principal: Principal, shipment_id: int):
        """Shipment mutations are open to the owning vendor and to platform admins."""
        await uow.guard.require_role(principal, [Role.VENDOR, Role.PLATFORM_ADMIN])
        shipment = await FulfillmentRepository.get_shipment(uow.db, shipment_id)
        if shipment is None:
            raise NotFound(f"Shipment {shipment_id} not found", {"shipment_id": shipment_id})
        sub_order = await self._get_sub_order(uow, shipment.sub_order_id)

        vendor = None
        if principal.role != Role.PLATFORM_ADMIN.value:
            vendor = await uow.guard.require_vendor(principal)
            uow.guard.require_sub_order_owner(vendor, sub_order)
        return shipment, sub_order, vendor

    @staticmethod
    async def _assign(uow: UnitOfWork, vendor: Optional[Vendor], shipment: Shipment, driver_id: int) -> Driver:
        if vendor is None:
            driver = await uow.guard.require_driver(driver_id)
        else:
            driver = await uow.guard.require_vendor_driver(vendor, driver_id)
        if shipment.status in TERMINAL_SHIPMENT_STATUSES:
            raise ValidationError(
                f"Shipment {shipment.id} is {shipment.status}; its driver can no longer change",
                {"id": shipment.id, "status": shipment.status},
            )
        shipment.driver_id = driver.id
        return driver

    @staticmethod
    def _notify_driver(uow: UnitOfWork, driver: Driver, shipment: Shipment, sub_order: SubOrder) -> None:
        uow.effects.notify(
            driver.user_id,
            f"Shipment #{shipment.id} has been assigned to you",
            type="shipment_assigned",
            order_id=sub_order.order_id,
            priority="high" if shipment.priority == ShipmentPriority.HIGH.value else "normal",
        )

    @staticmethod
    async def _notify_customer(uow: UnitOfWork, order_id: int, message: str, type: str) -> None:
        order = await FulfillmentRepository.get_order(uow.db, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found", {"order_id": order_id})
        uow.effects.notify(order.user_id, message, type=type, order_id=order_id)

    @staticmethod
    def _check_coordinate(field: str, value, bound: int) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not -bound <= value <= bound:
            raise ValidationError(
                f"{field} must be between -{bound} and {bound}",
                {"field": field, "value": value},
            )

    @staticmethod
    async def _get_order(uow: UnitOfWork, order_id: int, for_update: bool = False) -> Order:
        order = await FulfillmentRepository.get_order(uow.db, order_id, for_update=for_update)
        if order is None:
            raise NotFound(f"Order {order_id} not found", {"order_id": order_id})
        return order

    @staticmethod
    async def _get_sub_order(uow: UnitOfWork, sub_order_id: int) -> SubOrder:
        sub_order = await FulfillmentRepository.get_sub_order(uow.db, sub_order_id)
        if sub_order is None:
            raise NotFound(f"Sub-order {sub_order_id} not found", {"sub_order_id": sub_order_id})
        return sub_order
