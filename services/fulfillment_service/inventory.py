"""
Inventory ledger.

Each operation is a single conditional UPDATE whose new values are computed
by the database from the current row, so concurrent writers against the same
product serialize on the row instead of racing on values read earlier in
application memory. A guard that does not match leaves the row untouched and
the call fails as a whole; there is no partial reservation.
"""
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import InsufficientStock, NotFound, ValidationError
from .models import InventoryRecord, utcnow


class InventoryLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def reserve(self, product_id: int, quantity: int) -> None:
        self._check_quantity(quantity)
        stmt = (
            update(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .where(InventoryRecord.available >= quantity)
            .values(
                reserved=InventoryRecord.reserved + quantity,
                available=InventoryRecord.available - quantity,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            available = await self._available(product_id)
            raise InsufficientStock(product_id, available=available, requested=quantity)

    async def release(self, product_id: int, quantity: int) -> None:
        """Inverse of reserve. Callers release once per reservation event."""
        self._check_quantity(quantity)
        stmt = (
            update(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .where(InventoryRecord.reserved >= quantity)
            .values(
                reserved=InventoryRecord.reserved - quantity,
                available=InventoryRecord.available + quantity,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            await self._reject_unreserved(product_id, quantity, "release")

    async def consume(self, product_id: int, quantity: int) -> None:
        """A delivered reservation leaves the warehouse: level and reserved both drop."""
        self._check_quantity(quantity)
        stmt = (
            update(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .where(InventoryRecord.reserved >= quantity)
            .values(
                level=InventoryRecord.level - quantity,
                reserved=InventoryRecord.reserved - quantity,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            await self._reject_unreserved(product_id, quantity, "consume")

    async def get_record(self, product_id: int) -> Optional[InventoryRecord]:
        result = await self.db.execute(
            select(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError(
                f"Quantity must be a positive integer, got {quantity!r}",
                {"field": "quantity", "value": quantity},
            )

    async def _available(self, product_id: int) -> int:
        result = await self.db.execute(
            select(InventoryRecord.available).where(InventoryRecord.product_id == product_id)
        )
        available = result.scalar()
        if available is None:
            raise NotFound(
                f"No inventory record for product {product_id}",
                {"product_id": product_id},
            )
        return available

    async def _reject_unreserved(self, product_id: int, quantity: int, operation: str) -> None:
        result = await self.db.execute(
            select(InventoryRecord.reserved).where(InventoryRecord.product_id == product_id)
        )
        reserved = result.scalar()
        if reserved is None:
            raise NotFound(
                f"No inventory record for product {product_id}",
                {"product_id": product_id},
            )
        raise ValidationError(
            f"Cannot {operation} {quantity} units of product {product_id}: only {reserved} reserved",
            {"product_id": product_id, "reserved": reserved, "requested": quantity},
        )
