"""
Status cascade.

A terminal shipment outcome settles its sub-order, and once no sibling
sub-order is left pending or in progress the parent order takes a terminal
status chosen by the configured policy. Everything here runs inside the
caller's unit of work.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .constants import (
    ACTIVE_ORDER_STATUSES,
    SHIPMENT_OUTCOME_TO_SUB_ORDER,
    TERMINAL_ORDER_STATUSES,
    TERMINAL_SHIPMENT_STATUSES,
    CascadePolicy,
    OrderStatus,
    PaymentStatus,
    ShipmentStatus,
)
from .exceptions import NotFound
from .inventory import InventoryLedger
from .models import Order, Shipment, SubOrder, utcnow
from .repository import FulfillmentRepository
from .side_effects import SideEffectPipeline


class StatusCascadeEngine:
    def __init__(
        self,
        db: AsyncSession,
        effects: SideEffectPipeline,
        ledger: InventoryLedger,
        policy: CascadePolicy = CascadePolicy.MIRROR,
    ):
        self.db = db
        self.effects = effects
        self.ledger = ledger
        self.policy = CascadePolicy(policy)

    async def on_shipment_terminal(self, shipment: Shipment) -> Optional[str]:
        """Propagate a delivered/failed shipment to its sub-order and order."""
        sub_order = await FulfillmentRepository.get_sub_order(self.db, shipment.sub_order_id)
        if sub_order is None:
            raise NotFound(f"Sub-order {shipment.sub_order_id} not found", {"sub_order_id": shipment.sub_order_id})
        target = SHIPMENT_OUTCOME_TO_SUB_ORDER[shipment.status]
        return await self.settle_sub_order(sub_order, target)

    async def settle_sub_order(self, sub_order: SubOrder, status: str, roll_up: bool = True) -> Optional[str]:
        """
        Move an active sub-order to a terminal status and settle its
        reservations: delivered stock is consumed, cancelled stock goes back
        to ``available`` and any open shipment fails with it. Returns the new
        order status when the roll-up closed the order, else None. Already
        terminal sub-orders are skipped.
        """
        if sub_order.status not in ACTIVE_ORDER_STATUSES:
            return None

        sub_order.status = status
        sub_order.updated_at = utcnow()
        self.effects.record_status(sub_order.order_id, status, sub_order_id=sub_order.id)

        for item in sub_order.line_items:
            if status == OrderStatus.DELIVERED.value:
                await self.ledger.consume(item.product_id, item.quantity)
            else:
                await self.ledger.release(item.product_id, item.quantity)

        if status == OrderStatus.CANCELLED.value:
            for shipment in sub_order.shipments:
                if shipment.status not in TERMINAL_SHIPMENT_STATUSES:
                    shipment.last_known_status = shipment.status
                    shipment.status = ShipmentStatus.FAILED.value
                    shipment.updated_at = utcnow()
                    self.effects.record_status(
                        sub_order.order_id, shipment.status, sub_order_id=sub_order.id, shipment_id=shipment.id
                    )

        if not roll_up:
            return None
        return await self.roll_up(sub_order.order_id, status)

    async def roll_up(self, order_id: int, trigger_status: str) -> Optional[str]:
        # Row lock on the parent serializes concurrent roll-ups of siblings
        order = await FulfillmentRepository.get_order(self.db, order_id, for_update=True)
        if order is None:
            raise NotFound(f"Order {order_id} not found", {"order_id": order_id})
        if order.status in TERMINAL_ORDER_STATUSES:
            return None

        if await FulfillmentRepository.count_active_sub_orders(self.db, order_id) > 0:
            return None

        if self.policy == CascadePolicy.MIRROR:
            new_status = trigger_status
        else:
            new_status = self._strict_status(await FulfillmentRepository.sub_order_statuses(self.db, order_id))

        self.effects.record_rollup(self.policy.value, new_status)
        await self.transition_order(order, new_status)
        return new_status

    @staticmethod
    def _strict_status(statuses) -> str:
        if all(s == OrderStatus.DELIVERED.value for s in statuses):
            return OrderStatus.DELIVERED.value
        if all(s == OrderStatus.CANCELLED.value for s in statuses):
            return OrderStatus.CANCELLED.value
        return OrderStatus.PARTIALLY_FULFILLED.value

    async def advance_sub_order(self, sub_order: SubOrder) -> None:
        """pending -> in_progress; a pending parent order follows."""
        if sub_order.status == OrderStatus.PENDING.value:
            sub_order.status = OrderStatus.IN_PROGRESS.value
            sub_order.updated_at = utcnow()
            self.effects.record_status(sub_order.order_id, sub_order.status, sub_order_id=sub_order.id)

        order = await FulfillmentRepository.get_order(self.db, sub_order.order_id)
        if order is not None and order.status == OrderStatus.PENDING.value:
            await self.transition_order(order, OrderStatus.IN_PROGRESS.value)

    async def transition_order(self, order: Order, status: str) -> None:
        order.status = status
        order.updated_at = utcnow()
        self.effects.record_status(order.id, status)
        self.effects.notify(
            order.user_id,
            f"Order #{order.id} is now {status.replace('_', ' ')}",
            type="order_status",
            order_id=order.id,
            priority="high" if status == OrderStatus.CANCELLED.value else "normal",
        )
        if status == OrderStatus.CANCELLED.value:
            await self.refund_if_paid(order)

    async def refund_if_paid(self, order: Order) -> None:
        payment = await FulfillmentRepository.get_payment(self.db, order.id)
        if payment is not None and payment.status == PaymentStatus.PAID.value:
            payment.status = PaymentStatus.REFUNDED.value
            payment.updated_at = utcnow()
            self.effects.record_payment(payment.status)
            self.effects.audit("payment_refunded", order_id=order.id, payment_id=payment.id, amount=payment.amount)

    async def cancel_order_tree(self, order: Order) -> None:
        """Cancel every active sub-order (releasing its stock), then the order itself."""
        for sub_order in order.sub_orders:
            await self.settle_sub_order(sub_order, OrderStatus.CANCELLED.value, roll_up=False)
        await self.transition_order(order, OrderStatus.CANCELLED.value)
