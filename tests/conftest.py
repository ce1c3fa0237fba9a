"""
Test configuration and fixtures

Every test gets its own SQLite file database under tmp_path, so tests need no
external server. Writers serialise through BEGIN IMMEDIATE exactly as they do
in development.
"""

import os

# Set test environment before any ticket_holds import reads settings
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./ticket_holds_test.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
os.environ.pop("REDIS_URL", None)

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.pool import NullPool

from ticket_holds.core.clock import Clock
from ticket_holds.core.database import (
    DatabaseManager,
    build_engine,
    build_session_factory,
    init_db,
)
from ticket_holds.core.security import create_access_token
from ticket_holds.models import TicketDefinition
from ticket_holds.models.enums import QuantityMode
from ticket_holds.schemas.purchase_link import LinkCreate
from ticket_holds.schemas.ticket_hold import HoldCreate
from ticket_holds.services.analytics import HoldAnalyticsService
from ticket_holds.services.catalog import SqlTicketCatalog
from ticket_holds.services.coupons import CouponEngine, NOT_APPLICABLE
from ticket_holds.services.expiry_sweeper import ExpirySweeper
from ticket_holds.services.hold_ledger import HoldLedger
from ticket_holds.services.purchase_links import PurchaseLinkRegistry
from ticket_holds.services.redemption import RedemptionCoordinator, RedemptionRequest

VIP = 1
GENERAL = 2
BALCONY = 3

OPERATOR_ID = 900
BUYER_ID = 7


class FrozenClock(Clock):
    """Clock that only moves when told to"""

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


class HalfPriceCoupons(CouponEngine):
    """Coupon engine knowing a single code, HALF, that halves the order"""

    def __init__(self):
        self.calls = []

    async def apply_coupon(self, code, line_items):
        self.calls.append((code, list(line_items)))
        if code != "HALF":
            return NOT_APPLICABLE
        subtotal = sum(line.unit_price * line.quantity for line in line_items)
        return subtotal // 2


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with the schema created"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'holds.db'}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_manager(engine) -> DatabaseManager:
    return DatabaseManager(build_session_factory(engine), lock_timeout_ms=5000)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def ticket_definitions(db_manager):
    """VIP (10.00, 100 in stock), General (5.00, unlimited), Balcony (8.00, 10 in stock)"""
    async with db_manager.atomic() as session:
        session.add_all([
            TicketDefinition(id=VIP, event_occurrence_id=1, name="VIP", price=1000, total_quantity=100),
            TicketDefinition(id=GENERAL, event_occurrence_id=1, name="General", price=500, total_quantity=None),
            TicketDefinition(id=BALCONY, event_occurrence_id=1, name="Balcony", price=800, total_quantity=10),
        ])
    return [VIP, GENERAL, BALCONY]


@pytest.fixture
def catalog() -> SqlTicketCatalog:
    return SqlTicketCatalog()


@pytest.fixture
def coupon_engine() -> HalfPriceCoupons:
    return HalfPriceCoupons()


@pytest.fixture
def ledger(db_manager, catalog, clock, ticket_definitions) -> HoldLedger:
    return HoldLedger(db=db_manager, catalog=catalog, clock=clock)


@pytest.fixture
def registry(db_manager, catalog, clock, ticket_definitions) -> PurchaseLinkRegistry:
    return PurchaseLinkRegistry(db=db_manager, catalog=catalog, clock=clock)


@pytest.fixture
def coordinator(db_manager, catalog, coupon_engine, clock, ticket_definitions) -> RedemptionCoordinator:
    return RedemptionCoordinator(db=db_manager, catalog=catalog, coupon_engine=coupon_engine, clock=clock)


@pytest.fixture
def sweeper(db_manager, clock) -> ExpirySweeper:
    return ExpirySweeper(db=db_manager, clock=clock)


@pytest.fixture
def analytics(db_manager, catalog, clock) -> HoldAnalyticsService:
    return HoldAnalyticsService(db=db_manager, catalog=catalog, clock=clock)


def hold_data(allocations: Optional[List[dict]] = None, **overrides) -> HoldCreate:
    data = {
        "event_occurrence_id": 1,
        "organizer_id": 5,
        "name": "Sponsor block",
        "allocations": allocations or [
            {"ticket_definition_id": VIP, "allocated_quantity": 10, "pricing_mode": "original"},
        ],
    }
    data.update(overrides)
    return HoldCreate(**data)


def link_data(hold_id, quantity_mode=QuantityMode.MAXIMUM, quantity_limit: Optional[int] = 10, **overrides) -> LinkCreate:
    data = {
        "ticket_hold_id": hold_id,
        "quantity_mode": quantity_mode,
        "quantity_limit": quantity_limit,
    }
    data.update(overrides)
    return LinkCreate(**data)


def redemption(code: str, *items, coupon_code: Optional[str] = None) -> RedemptionRequest:
    return RedemptionRequest.build(code, list(items), coupon_code)


@pytest_asyncio.fixture
async def hold(ledger):
    """Active hold with 10 VIP tickets at the original price"""
    return await ledger.create_hold(hold_data(), created_by=OPERATOR_ID)


def auth_headers(user_id: int, role: Optional[str] = None) -> dict:
    data = {"sub": str(user_id)}
    if role:
        data["role"] = role
    return {"Authorization": f"Bearer {create_access_token(data=data)}"}


@pytest.fixture
def operator_headers() -> dict:
    return auth_headers(OPERATOR_ID, role="organizer")


@pytest.fixture
def buyer_headers() -> dict:
    return auth_headers(BUYER_ID, role="customer")


@pytest_asyncio.fixture
async def client(ledger, registry, coordinator, analytics, db_manager):
    """Test client with the services bound to the test database"""
    from ticket_holds.main import app
    from ticket_holds.core.database import get_db_manager
    from ticket_holds.services.analytics import get_analytics_service
    from ticket_holds.services.hold_ledger import get_hold_ledger
    from ticket_holds.services.purchase_links import get_purchase_link_registry
    from ticket_holds.services.redemption import get_redemption_coordinator

    app.dependency_overrides[get_hold_ledger] = lambda: ledger
    app.dependency_overrides[get_purchase_link_registry] = lambda: registry
    app.dependency_overrides[get_redemption_coordinator] = lambda: coordinator
    app.dependency_overrides[get_analytics_service] = lambda: analytics
    app.dependency_overrides[get_db_manager] = lambda: db_manager

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
