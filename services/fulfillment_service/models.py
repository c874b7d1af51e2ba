from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from shared.config.database import Base

from .constants import OrderStatus, PaymentStatus, ShipmentPriority, ShipmentStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Reference data owned by external collaborators (read-only here) ---

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(String(32), nullable=False) # customer, vendor, driver, fleet_manager, platform_admin


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    line1 = Column(String(255), nullable=False)
    city = Column(String(100), nullable=False)
    region = Column(String(100), nullable=True)
    latitude = Column(Numeric(9, 6), nullable=True)
    longitude = Column(Numeric(9, 6), nullable=True)


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address_id = Column(Integer, ForeignKey("addresses.id"), nullable=True)


class Driver(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    plate_number = Column(String(20), nullable=False)
    vehicle_type = Column(String(50), nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)


class VendorDriver(Base):
    __tablename__ = "vendor_drivers"
    __table_args__ = (UniqueConstraint("vendor_id", "driver_id", name="uq_vendor_drivers_pair"),)

    id = Column(Integer, primary_key=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)


class Product(Base):
    """Catalog row: only the owning vendor and the weight matter to fulfillment."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False) # minor currency units
    weight = Column(Integer, nullable=False, default=0) # grams


# --- Inventory ---

class InventoryRecord(Base):
    """
    Stock of one product. ``available == level - reserved`` is enforced by the
    database and every writer goes through a single conditional UPDATE.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        CheckConstraint("available = level - reserved", name="ck_inventory_consistency"),
        CheckConstraint("reserved >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint("available >= 0", name="ck_inventory_available_non_negative"),
    )

    product_id = Column(Integer, ForeignKey("products.id"), primary_key=True)
    level = Column(Integer, nullable=False)
    reserved = Column(Integer, nullable=False, default=0)
    available = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow)


# --- Order aggregate ---

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    origin_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=True)
    destination_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=False)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    estimated_delivery_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    sub_orders = relationship("SubOrder", lazy="selectin", order_by="SubOrder.id")
    payment = relationship("Payment", lazy="selectin", uselist=False)


class SubOrder(Base):
    """One vendor's slice of an order."""
    __tablename__ = "sub_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    subtotal = Column(Integer, nullable=False)
    delivery_fee = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False)
    total_weight = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    line_items = relationship("LineItem", lazy="selectin", order_by="LineItem.id")
    shipments = relationship("Shipment", lazy="selectin", order_by="Shipment.id")
    platform_fee = relationship("PlatformFee", lazy="selectin", uselist=False)
    commission = relationship("StoreCommission", lazy="selectin", uselist=False)


class LineItem(Base):
    __tablename__ = "line_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_line_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_line_items_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    sub_order_id = Column(Integer, ForeignKey("sub_orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False) # minor currency units


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    amount = Column(Integer, nullable=False)
    method = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False, default=PaymentStatus.PENDING.value)
    transaction_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# --- Marketplace accounting ---

class PlatformFee(Base):
    __tablename__ = "platform_fees"

    id = Column(Integer, primary_key=True, index=True)
    sub_order_id = Column(Integer, ForeignKey("sub_orders.id"), nullable=False, unique=True)
    store_fee = Column(Integer, nullable=False)
    delivery_fee = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class StoreCommission(Base):
    __tablename__ = "store_commissions"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    sub_order_id = Column(Integer, ForeignKey("sub_orders.id"), nullable=False, unique=True)
    commission_rate = Column(Integer, nullable=False) # percent
    commission_amount = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# --- Shipping ---

class Shipment(Base):
    __tablename__ = "shipments"
    __table_args__ = (
        # At most one active (non-failed) shipment per sub-order
        Index(
            "uq_shipments_active_sub_order",
            "sub_order_id",
            unique=True,
            sqlite_where=text("status != 'failed'"),
            postgresql_where=text("status != 'failed'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    sub_order_id = Column(Integer, ForeignKey("sub_orders.id"), nullable=False)
    origin_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    status = Column(String(32), nullable=False, default=ShipmentStatus.PENDING.value)
    last_known_status = Column(String(32), nullable=True)
    priority = Column(String(16), nullable=False, default=ShipmentPriority.NORMAL.value)
    delivery_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class TrackingPoint(Base):
    __tablename__ = "tracking_points"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)
    latitude = Column(Numeric(9, 6), nullable=False)
    longitude = Column(Numeric(9, 6), nullable=False)
    recorded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# --- Append-only side-effect logs ---

class StatusHistoryEntry(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    sub_order_id = Column(Integer, ForeignKey("sub_orders.id"), nullable=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=True)
    status = Column(String(32), nullable=False)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    changed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False)
    priority = Column(String(20), nullable=False, default="normal")
    status = Column(String(20), nullable=False, default="unread")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AuditLogEntry(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String(255), nullable=False)
    details = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
