import os

# Must be set before the shared config modules are imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./fulfillment-test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["TRACING_ENABLED"] = "false"
os.environ.setdefault("CREATE_ORDER_RATE_LIMIT", "1000/minute")

from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from shared.config.database import Base
from shared.security.principal import Principal, Role
from services.fulfillment_service.constants import CascadePolicy
from services.fulfillment_service.models import (
    Address,
    Driver,
    InventoryRecord,
    Product,
    User,
    Vendor,
    VendorDriver,
)
from services.fulfillment_service.schemas import DeliveryEstimate, OrderCreate, OrderItemIn
from services.fulfillment_service.service import FulfillmentOrchestrator


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    # A file database so concurrent sessions use separate connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def world(session_factory):
    """
    Two stores with one linked driver each:
    vendor A sells product A (stock 5), vendor B sells product B (stock 3).
    """
    async with session_factory() as db:
        customer = User(email="amina@example.com", name="Amina", role=Role.CUSTOMER.value)
        other_customer = User(email="moussa@example.com", name="Moussa", role=Role.CUSTOMER.value)
        vendor_a_owner = User(email="shop-a@example.com", name="Shop A", role=Role.VENDOR.value)
        vendor_b_owner = User(email="shop-b@example.com", name="Shop B", role=Role.VENDOR.value)
        admin = User(email="ops@example.com", name="Ops", role=Role.PLATFORM_ADMIN.value)
        driver_a_user = User(email="driver-a@example.com", name="Ali", role=Role.DRIVER.value)
        driver_b_user = User(email="driver-b@example.com", name="Binta", role=Role.DRIVER.value)
        db.add_all([customer, other_customer, vendor_a_owner, vendor_b_owner, admin, driver_a_user, driver_b_user])
        await db.flush()

        home = Address(user_id=customer.id, line1="12 Rue Carnot", city="Dakar")
        other_home = Address(user_id=other_customer.id, line1="4 Avenue Bourguiba", city="Thies")
        warehouse_a = Address(user_id=vendor_a_owner.id, line1="Zone Industrielle", city="Dakar")
        warehouse_b = Address(user_id=vendor_b_owner.id, line1="Marche Sandaga", city="Dakar")
        db.add_all([home, other_home, warehouse_a, warehouse_b])
        await db.flush()

        vendor_a = Vendor(owner_user_id=vendor_a_owner.id, name="Shop A", address_id=warehouse_a.id)
        vendor_b = Vendor(owner_user_id=vendor_b_owner.id, name="Shop B", address_id=warehouse_b.id)
        driver_a = Driver(user_id=driver_a_user.id, plate_number="DK-1001-A", vehicle_type="motorbike")
        driver_b = Driver(user_id=driver_b_user.id, plate_number="DK-2002-B", vehicle_type="van")
        db.add_all([vendor_a, vendor_b, driver_a, driver_b])
        await db.flush()

        db.add_all([
            VendorDriver(vendor_id=vendor_a.id, driver_id=driver_a.id),
            VendorDriver(vendor_id=vendor_b.id, driver_id=driver_b.id),
        ])
        product_a = Product(vendor_id=vendor_a.id, name="Wax fabric", price=1000, weight=500)
        product_b = Product(vendor_id=vendor_b.id, name="Shea butter", price=2500, weight=1200)
        db.add_all([product_a, product_b])
        await db.flush()

        db.add_all([
            InventoryRecord(product_id=product_a.id, level=5, reserved=0, available=5),
            InventoryRecord(product_id=product_b.id, level=3, reserved=0, available=3),
        ])
        await db.commit()

    return SimpleNamespace(
        customer=Principal(customer.id, Role.CUSTOMER.value),
        other_customer=Principal(other_customer.id, Role.CUSTOMER.value),
        vendor_a=Principal(vendor_a_owner.id, Role.VENDOR.value),
        vendor_b=Principal(vendor_b_owner.id, Role.VENDOR.value),
        admin=Principal(admin.id, Role.PLATFORM_ADMIN.value),
        driver_user=Principal(driver_a_user.id, Role.DRIVER.value),
        home_id=home.id,
        other_home_id=other_home.id,
        store_a_id=vendor_a.id,
        store_b_id=vendor_b.id,
        warehouse_a_id=warehouse_a.id,
        driver_a_id=driver_a.id,
        driver_b_id=driver_b.id,
        driver_a_user_id=driver_a_user.id,
        product_a_id=product_a.id,
        product_b_id=product_b.id,
    )


@pytest.fixture
def orchestrator(session_factory):
    return FulfillmentOrchestrator(session_factory)


@pytest.fixture
def strict_orchestrator(session_factory):
    return FulfillmentOrchestrator(session_factory, cascade_policy=CascadePolicy.STRICT)


@pytest.fixture
def order_data(world):
    """Builds an order for product A and/or product B with a delivery estimate per store."""
    def build(qty_a=5, qty_b=3, payment_method="orange_money", address_id=None):
        items, estimates = [], []
        if qty_a:
            items.append(OrderItemIn(product_id=world.product_a_id, quantity=qty_a, unit_price=1000))
            estimates.append(DeliveryEstimate(vendor_id=world.store_a_id, delivery_fee=500, estimated_days=2))
        if qty_b:
            items.append(OrderItemIn(product_id=world.product_b_id, quantity=qty_b, unit_price=2500))
            estimates.append(DeliveryEstimate(vendor_id=world.store_b_id, delivery_fee=700, estimated_days=4))
        return OrderCreate(
            items=items,
            destination_address_id=address_id or world.home_id,
            payment_method=payment_method,
            delivery_estimates=estimates,
        )
    return build


@pytest.fixture
def inventory(session_factory):
    async def read(product_id):
        async with session_factory() as db:
            return await db.get(InventoryRecord, product_id)
    return read


@pytest.fixture
def count_rows(session_factory):
    async def count(model, **filters):
        async with session_factory() as db:
            stmt = select(func.count()).select_from(model)
            for column, value in filters.items():
                stmt = stmt.where(getattr(model, column) == value)
            return (await db.execute(stmt)).scalar_one()
    return count


@pytest.fixture
def sub_order_of():
    def pick(order, store_id):
        return next(s for s in order.sub_orders if s.vendor_id == store_id)
    return pick
