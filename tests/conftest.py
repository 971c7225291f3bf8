"""Pytest configuration and fixtures."""

import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional

# Settings are read once per process, so the environment is fixed before
# anything from orderflow is imported.
_TEST_DIR = tempfile.mkdtemp(prefix="orderflow-tests-")
TEST_DB_PATH = os.path.join(_TEST_DIR, "orderflow-test.db")

os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["BROADCAST_BACKEND"] = "memory"
os.environ["PAYMENT_MOCK_FAILURE_RATE"] = "0"
os.environ["PAYMENT_MOCK_MIN_LATENCY"] = "0"
os.environ["PAYMENT_MOCK_MAX_LATENCY"] = "0"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["TERMINAL_DATA_DIRECTORY"] = os.path.join(_TEST_DIR, "terminals")

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from orderflow.core.security import (
    DISPLAY_ROLE,
    OUTLET_ADMIN_ROLE,
    TERMINAL_ROLE,
    Principal,
    PrincipalKind,
    create_token,
)
from orderflow.database import Base, async_session_maker
from orderflow.models import (
    CatalogItem,
    FulfillmentStatus,
    InventoryRecord,
    Location,
    Order,
    OrderStatus,
    PaymentStatus,
    generate_id,
)
from orderflow.services.payment import BasePaymentService, PaymentResult
from orderflow.services.realtime import MemoryBroadcastHub, reset_broadcast_hub

sync_engine = create_engine(f"sqlite:///{TEST_DB_PATH}", poolclass=NullPool)

TENANT_ID = "tenant-1"
OTHER_TENANT_ID = "tenant-2"
LOCATION_ID = "loc-1"
OTHER_LOCATION_ID = "loc-2"

ITEM_WRAP = "item-wrap"      # 10 in stock at loc-1, outlet price 130
ITEM_DOSA = "item-dosa"      # 2 in stock at loc-1, catalog price
ITEM_COFFEE = "item-coffee"  # 5 in stock at loc-1, switched off at the outlet
ITEM_LASSI = "item-lassi"    # no inventory record anywhere
ITEM_FOREIGN = "item-foreign"  # belongs to another tenant


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture(autouse=True)
def fresh_database():
    """Recreate the schema and seed outlets, catalog and stock for every test."""
    import orderflow.models  # noqa: F401

    Base.metadata.drop_all(bind=sync_engine)
    Base.metadata.create_all(bind=sync_engine)

    with Session(sync_engine) as db:
        db.add_all([
            Location(id=LOCATION_ID, tenant_id=TENANT_ID, name="MG Road", order_number=0),
            Location(id=OTHER_LOCATION_ID, tenant_id=TENANT_ID, name="Indiranagar", order_number=0),
            CatalogItem(id=ITEM_WRAP, tenant_id=TENANT_ID, name="Paneer Wrap", category="Mains", default_amount=120.0),
            CatalogItem(id=ITEM_DOSA, tenant_id=TENANT_ID, name="Masala Dosa", category="Mains", default_amount=90.0),
            CatalogItem(id=ITEM_COFFEE, tenant_id=TENANT_ID, name="Cold Coffee", category="Drinks", default_amount=80.0),
            CatalogItem(id=ITEM_LASSI, tenant_id=TENANT_ID, name="Mango Lassi", category="Drinks", default_amount=70.0),
            CatalogItem(id=ITEM_FOREIGN, tenant_id=OTHER_TENANT_ID, name="Burrito", default_amount=200.0),
            InventoryRecord(item_id=ITEM_WRAP, location_id=LOCATION_ID, quantity=10, price=130.0),
            InventoryRecord(item_id=ITEM_DOSA, location_id=LOCATION_ID, quantity=2, price=None),
            InventoryRecord(item_id=ITEM_COFFEE, location_id=LOCATION_ID, quantity=5, enabled=False),
            InventoryRecord(item_id=ITEM_WRAP, location_id=OTHER_LOCATION_ID, quantity=4, price=125.0),
        ])
        db.commit()

    reset_broadcast_hub()
    yield
    reset_broadcast_hub()


@pytest.fixture
def session_maker():
    return async_session_maker


def quantity_of(item_id: str, location_id: str = LOCATION_ID) -> Optional[int]:
    with sync_engine.connect() as conn:
        return conn.execute(
            select(InventoryRecord.quantity).where(
                InventoryRecord.item_id == item_id,
                InventoryRecord.location_id == location_id,
            )
        ).scalar()


def order_count(location_id: str = LOCATION_ID) -> int:
    with sync_engine.connect() as conn:
        return len(conn.execute(select(Order.id).where(Order.location_id == location_id)).all())


def counter_of(location_id: str = LOCATION_ID) -> int:
    with sync_engine.connect() as conn:
        return conn.execute(select(Location.order_number).where(Location.id == location_id)).scalar()


def make_order(
    order_no: int,
    location_id: str = LOCATION_ID,
    order_status: OrderStatus = OrderStatus.COMPLETED,
    fulfillment_status: FulfillmentStatus = FulfillmentStatus.CREATED,
    items: Optional[list] = None,
    created_at: Optional[datetime] = None,
    stock_released: bool = False,
) -> str:
    """Insert an order row directly and return its id."""
    payment_status = {
        OrderStatus.PENDING: PaymentStatus.PENDING,
        OrderStatus.COMPLETED: PaymentStatus.DONE,
        OrderStatus.FAILED: PaymentStatus.FAILED,
    }[order_status]
    items = items or [{"itemId": ITEM_WRAP, "name": "Paneer Wrap", "qty": 1, "price": 130.0}]
    order_id = generate_id()

    with Session(sync_engine) as db:
        db.add(Order(
            id=order_id,
            order_no=order_no,
            location_id=location_id,
            tenant_id=TENANT_ID,
            items=json.dumps(items),
            total_amount=sum(line["qty"] * line["price"] for line in items),
            payment_status=payment_status,
            order_status=order_status,
            fulfillment_status=fulfillment_status,
            stock_released=stock_released,
            created_at=created_at or datetime.now(timezone.utc),
        ))
        db.commit()
    return order_id


def minutes_ago(minutes: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)


# =============================================================================
# PRINCIPALS & TOKENS
# =============================================================================

@pytest.fixture
def terminal_principal() -> Principal:
    return Principal(
        subject_id="kiosk-1",
        kind=PrincipalKind.TERMINAL,
        role=TERMINAL_ROLE,
        location_id=LOCATION_ID,
        tenant_id=TENANT_ID,
    )


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def terminal_headers() -> dict:
    return bearer(create_token("kiosk-1", TERMINAL_ROLE, LOCATION_ID, TENANT_ID))


@pytest.fixture
def staff_headers() -> dict:
    return bearer(create_token("staff-1", "kitchen", LOCATION_ID, TENANT_ID))


@pytest.fixture
def admin_headers() -> dict:
    return bearer(create_token("admin-1", OUTLET_ADMIN_ROLE, LOCATION_ID, TENANT_ID))


@pytest.fixture
def display_headers() -> dict:
    return bearer(create_token("display-1", DISPLAY_ROLE, LOCATION_ID, TENANT_ID))


# =============================================================================
# FAKES
# =============================================================================

class RecordingMember:
    """Room member that keeps every frame it receives."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.messages.append(json.loads(data))

    def events(self, name: str) -> list:
        return [m for m in self.messages if m["event"] == name]


class ScriptedPaymentService(BasePaymentService):
    """Payment step whose outcome is chosen by the test: success, decline, raise or hang."""

    def __init__(self, outcome: str = "success"):
        self.outcome = outcome
        self.calls = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def process_payment(self, amount, payer_name, upi_id, reference, currency="inr"):
        import asyncio

        self.calls.append({"amount": amount, "payer_name": payer_name, "upi_id": upi_id, "reference": reference})
        if self.outcome == "success":
            return PaymentResult(success=True, payment_reference=f"pay_{reference[:8]}", amount=amount)
        if self.outcome == "decline":
            return PaymentResult(success=False, error_message="Insufficient funds in the payer account.", error_code="Z9")
        if self.outcome == "raise":
            raise ConnectionError("gateway unreachable")
        await asyncio.sleep(10)
        return PaymentResult(success=True, payment_reference="too-late", amount=amount)

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def hub() -> MemoryBroadcastHub:
    return MemoryBroadcastHub()


@pytest.fixture
def room(hub) -> RecordingMember:
    """A member of loc-1's room on the ``hub`` fixture."""
    member = RecordingMember()
    hub.join(LOCATION_ID, member)
    return member


@pytest.fixture
def ids():
    return SimpleNamespace(
        tenant=TENANT_ID,
        location=LOCATION_ID,
        other_location=OTHER_LOCATION_ID,
        wrap=ITEM_WRAP,
        dosa=ITEM_DOSA,
        coffee=ITEM_COFFEE,
        lassi=ITEM_LASSI,
        foreign=ITEM_FOREIGN,
    )
