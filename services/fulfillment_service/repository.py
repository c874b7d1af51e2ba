from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .constants import ACTIVE_ORDER_STATUSES, ShipmentStatus
from .models import (
    Address,
    Driver,
    Order,
    Payment,
    Product,
    Shipment,
    SubOrder,
    User,
    Vendor,
    VendorDriver,
)


class FulfillmentRepository:
    """Thin query helpers. Nothing here commits: the unit of work owns the transaction."""

    @staticmethod
    async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
        return await db.get(User, user_id)

    @staticmethod
    async def get_address(db: AsyncSession, address_id: int) -> Optional[Address]:
        return await db.get(Address, address_id)

    @staticmethod
    async def get_vendor(db: AsyncSession, vendor_id: int) -> Optional[Vendor]:
        return await db.get(Vendor, vendor_id)

    @staticmethod
    async def get_vendor_by_owner(db: AsyncSession, user_id: int) -> Optional[Vendor]:
        result = await db.execute(select(Vendor).where(Vendor.owner_user_id == user_id).limit(1))
        return result.scalars().first()

    @staticmethod
    async def get_driver(db: AsyncSession, driver_id: int) -> Optional[Driver]:
        return await db.get(Driver, driver_id)

    @staticmethod
    async def is_vendor_driver(db: AsyncSession, vendor_id: int, driver_id: int) -> bool:
        result = await db.execute(
            select(VendorDriver.id)
            .where(VendorDriver.vendor_id == vendor_id)
            .where(VendorDriver.driver_id == driver_id)
            .limit(1)
        )
        return result.scalar() is not None

    @staticmethod
    async def get_products(db: AsyncSession, product_ids: Iterable[int]) -> List[Product]:
        result = await db.execute(select(Product).where(Product.id.in_(set(product_ids))))
        return list(result.scalars().all())

    @staticmethod
    async def get_product(db: AsyncSession, product_id: int) -> Optional[Product]:
        return await db.get(Product, product_id)

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int, for_update: bool = False) -> Optional[Order]:
        # FOR UPDATE is dropped by backends without row locks (SQLite)
        return await db.get(Order, order_id, with_for_update=for_update or None)

    @staticmethod
    async def get_sub_order(db: AsyncSession, sub_order_id: int) -> Optional[SubOrder]:
        return await db.get(SubOrder, sub_order_id)

    @staticmethod
    async def get_shipment(db: AsyncSession, shipment_id: int) -> Optional[Shipment]:
        return await db.get(Shipment, shipment_id)

    @staticmethod
    async def get_payment(db: AsyncSession, order_id: int) -> Optional[Payment]:
        result = await db.execute(select(Payment).where(Payment.order_id == order_id))
        return result.scalars().first()

    @staticmethod
    async def get_active_shipment(db: AsyncSession, sub_order_id: int) -> Optional[Shipment]:
        result = await db.execute(
            select(Shipment)
            .where(Shipment.sub_order_id == sub_order_id)
            .where(Shipment.status != ShipmentStatus.FAILED.value)
            .limit(1)
        )
        return result.scalars().first()

    @staticmethod
    async def count_active_sub_orders(db: AsyncSession, order_id: int) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(SubOrder)
            .where(SubOrder.order_id == order_id)
            .where(SubOrder.status.in_(ACTIVE_ORDER_STATUSES))
        )
        return int(result.scalar_one())

    @staticmethod
    async def sub_order_statuses(db: AsyncSession, order_id: int) -> List[str]:
        result = await db.execute(select(SubOrder.status).where(SubOrder.order_id == order_id))
        return list(result.scalars().all())
