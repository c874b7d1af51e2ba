from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from shared.security.principal import Principal, Role

from .exceptions import AuthorizationError, NotFound
from .models import Address, Driver, Order, Product, SubOrder, Vendor
from .repository import FulfillmentRepository


class RoleGuard:
    """
    Authorization checks for the orchestrator. Each check runs before the
    mutation (or privileged read) it protects, inside the same transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def require_role(self, principal: Principal, allowed_roles: Iterable[Role]) -> None:
        allowed = {Role(r).value for r in allowed_roles}
        user = await FulfillmentRepository.get_user(self.db, principal.id)
        # The stored role is authoritative; a token claiming another role is rejected
        if user is None or user.role != principal.role or user.role not in allowed:
            raise AuthorizationError(
                f"User {principal.id} does not hold a required role: {', '.join(sorted(allowed))}",
                {"user_id": principal.id, "role": principal.role, "allowed_roles": sorted(allowed)},
            )

    async def require_vendor(self, principal: Principal) -> Vendor:
        await self.require_role(principal, [Role.VENDOR])
        vendor = await FulfillmentRepository.get_vendor_by_owner(self.db, principal.id)
        if vendor is None:
            raise NotFound(f"No store found for vendor user {principal.id}", {"user_id": principal.id})
        return vendor

    @staticmethod
    def require_sub_order_owner(vendor: Vendor, sub_order: SubOrder) -> None:
        if sub_order.vendor_id != vendor.id:
            raise AuthorizationError(
                f"Sub-order {sub_order.id} does not belong to store {vendor.id}",
                {"sub_order_id": sub_order.id, "vendor_id": vendor.id},
            )

    @staticmethod
    def require_order_owner(principal: Principal, order: Order) -> None:
        if order.user_id != principal.id:
            raise AuthorizationError(
                f"Order {order.id} does not belong to user {principal.id}",
                {"order_id": order.id, "user_id": principal.id},
            )

    @staticmethod
    def require_product_owner(vendor: Vendor, product: Product) -> None:
        if product.vendor_id != vendor.id:
            raise AuthorizationError(
                f"Product {product.id} does not belong to store {vendor.id}",
                {"product_id": product.id, "vendor_id": vendor.id},
            )

    async def require_address_owner(self, user_id: int, address_id: int) -> Address:
        address = await FulfillmentRepository.get_address(self.db, address_id)
        if address is None:
            raise NotFound(f"Address {address_id} not found", {"address_id": address_id})
        if address.user_id != user_id:
            raise AuthorizationError(
                f"Address {address_id} does not belong to user {user_id}",
                {"address_id": address_id, "user_id": user_id},
            )
        return address

    async def require_driver(self, driver_id: int) -> Driver:
        driver = await FulfillmentRepository.get_driver(self.db, driver_id)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found", {"driver_id": driver_id})
        return driver

    async def require_vendor_driver(self, vendor: Vendor, driver_id: int) -> Driver:
        driver = await self.require_driver(driver_id)
        if not await FulfillmentRepository.is_vendor_driver(self.db, vendor.id, driver_id):
            raise AuthorizationError(
                f"Driver {driver_id} is not associated with store {vendor.id}",
                {"driver_id": driver_id, "vendor_id": vendor.id},
            )
        return driver
