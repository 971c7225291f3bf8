"""
SQLAlchemy Database Models

Order pipeline tables:
- Location: outlet row owned by provisioning; carries the order counter
- CatalogItem: tenant menu item owned by menu management (read only here)
- InventoryRecord: per-(item, location) stock, price override and switch
- Order: kiosk order with payment, order and fulfillment status
"""

import enum
import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from orderflow.database import Base


def generate_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStatus(str, enum.Enum):
    """Outcome of the payment step."""
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class OrderStatus(str, enum.Enum):
    """Order lifecycle: Pending until the payment step resolves, then terminal."""
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"


class FulfillmentStatus(str, enum.Enum):
    """Kitchen progress of a Completed order."""
    CREATED = "created"
    RECEIVED = "received"
    COOKING = "cooking"
    PREPARED = "prepared"
    SERVED = "served"


FULFILLMENT_SEQUENCE = [
    FulfillmentStatus.CREATED,
    FulfillmentStatus.RECEIVED,
    FulfillmentStatus.COOKING,
    FulfillmentStatus.PREPARED,
    FulfillmentStatus.SERVED,
]


class Location(Base):
    """
    Outlet (restaurant branch).

    Provisioned elsewhere; this service only reads it and bumps
    ``order_number``, which is never decremented or reset.
    """
    __tablename__ = "locations"

    id = Column(String(32), primary_key=True, default=generate_id)
    tenant_id = Column(String(32), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    order_number = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<Location {self.id} - {self.name} - #{self.order_number}>"


class CatalogItem(Base):
    """Tenant-level menu item. ``default_amount`` is the catalog price."""
    __tablename__ = "items"

    id = Column(String(32), primary_key=True, default=generate_id)
    tenant_id = Column(String(32), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    default_amount = Column(Float, nullable=False)
    status = Column(Boolean, default=True, nullable=False)
    image_url = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    def __repr__(self):
        return f"<CatalogItem {self.id} - {self.name}>"


class InventoryRecord(Base):
    """
    Outlet stock for one catalog item.

    ``price`` NULL means the catalog default applies. Rows are created
    lazily and only ever adjusted, never deleted.
    """
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(String(32), nullable=False)
    location_id = Column(String(32), nullable=False)

    quantity = Column(Integer, default=0, nullable=False)
    price = Column(Float, nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
    edited_by = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("item_id", "location_id", name="uq_inventory_item_location"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        Index("ix_inventory_location", "location_id"),
    )

    def __repr__(self):
        return f"<InventoryRecord {self.item_id}@{self.location_id} qty={self.quantity}>"


class Order(Base):
    """
    Kiosk order.

    ``items`` is a JSON snapshot of the cart at submission time and is never
    rewritten. ``fulfillment_status`` is only written by the fulfillment
    state machine, and only while ``order_status`` is Completed.
    """
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, default=generate_id)
    order_no = Column(Integer, nullable=False)

    # =========================================================================
    # SCOPE
    # =========================================================================
    location_id = Column(String(32), nullable=False)
    tenant_id = Column(String(32), nullable=False, index=True)
    terminal_id = Column(String(64), nullable=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(Text, nullable=False)  # JSON snapshot of ordered lines
    total_amount = Column(Float, nullable=False)

    # =========================================================================
    # PAYMENT INFO
    # =========================================================================
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    payment_details = Column(Text, nullable=True)  # JSON, set on success only
    payment_reference = Column(String(100), nullable=True)
    failure_reason = Column(String(255), nullable=True)

    # =========================================================================
    # STATUS
    # =========================================================================
    order_status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False)
    fulfillment_status = Column(
        Enum(FulfillmentStatus),
        default=FulfillmentStatus.CREATED,
        nullable=False,
    )
    stock_released = Column(Boolean, default=False, nullable=False)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("location_id", "order_no", name="uq_orders_location_order_no"),
        Index("ix_orders_location_status", "location_id", "order_status", "fulfillment_status"),
        Index("ix_orders_location_created", "location_id", "created_at"),
    )

    @property
    def items_snapshot(self) -> list[dict]:
        return json.loads(self.items) if self.items else []

    @property
    def payment_details_dict(self):
        return json.loads(self.payment_details) if self.payment_details else None

    def __repr__(self):
        return f"<Order #{self.order_no} ({self.id}) - {self.order_status.value} - {self.fulfillment_status.value}>"
