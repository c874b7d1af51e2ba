from typing import Any, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from shared.observability import (
    fulfillment_cascade_rollups_total,
    fulfillment_status_transitions_total,
)

from .models import AuditLogEntry, Notification, StatusHistoryEntry


class SideEffectPipeline:
    """
    History, notification and audit writes for one unit of work.

    Rows are added to the unit of work's session, so they commit or roll back
    together with the state change they describe. Metrics are buffered and
    only published once the transaction has committed.
    """

    def __init__(self, db: AsyncSession, actor_id: Optional[int]):
        self.db = db
        self.actor_id = actor_id
        self._transitions: List[Tuple[str, str]] = []
        self._rollups: List[Tuple[str, str]] = []

    def record_status(
        self,
        order_id: int,
        status: str,
        sub_order_id: Optional[int] = None,
        shipment_id: Optional[int] = None,
    ) -> StatusHistoryEntry:
        entry = StatusHistoryEntry(
            order_id=order_id,
            sub_order_id=sub_order_id,
            shipment_id=shipment_id,
            status=status,
            changed_by=self.actor_id,
        )
        self.db.add(entry)
        if shipment_id is not None:
            entity = "shipment"
        elif sub_order_id is not None:
            entity = "sub_order"
        else:
            entity = "order"
        self._transitions.append((entity, status))
        return entry

    def record_payment(self, status: str) -> None:
        self._transitions.append(("payment", status))

    def record_rollup(self, policy: str, status: str) -> None:
        self._rollups.append((policy, status))

    def notify(
        self,
        user_id: int,
        message: str,
        type: str,
        order_id: Optional[int] = None,
        priority: str = "normal",
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            order_id=order_id,
            message=message,
            type=type,
            priority=priority,
            status="unread",
        )
        self.db.add(notification)
        return notification

    def audit(self, action: str, **details: Any) -> AuditLogEntry:
        entry = AuditLogEntry(user_id=self.actor_id, action=action, details=dict(details))
        self.db.add(entry)
        return entry

    def publish(self) -> None:
        """Called by the unit of work after a successful commit."""
        for entity, status in self._transitions:
            fulfillment_status_transitions_total.labels(entity=entity, status=status).inc()
        for policy, status in self._rollups:
            fulfillment_cascade_rollups_total.labels(policy=policy, status=status).inc()
        self._transitions.clear()
        self._rollups.clear()

    def discard(self) -> None:
        self._transitions.clear()
        self._rollups.clear()

