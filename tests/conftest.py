"""
Pytest configuration and fixtures for async database testing.

Every test gets a fresh in-memory SQLite database (aiosqlite). StaticPool
keeps a single connection so all sessions see the same tables.
"""
from datetime import date

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from detailing import models  # noqa: F401  (registers tables on Base.metadata)
from detailing.booking_engine import BookingRequest
from detailing.core.config import Settings
from detailing.core.db import Base
from detailing.dependencies import build_services
from detailing.domain import Address, CartItem, Vehicle, VehicleType

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingNotifier:
    """Notifier that keeps every message for assertions."""

    def __init__(self):
        self.sent = []

    async def notify(self, template_name, payload):
        self.sent.append((template_name, payload))

    @property
    def templates(self):
        return [name for name, _ in self.sent]


class RecordingGateway:
    """Payment gateway that records intents and refunds."""

    def __init__(self):
        self.intents = []
        self.refunds = []

    async def create_intent(self, amount):
        intent_ref = f"pi_test_{len(self.intents) + 1}"
        self.intents.append((intent_ref, amount))
        return intent_ref

    async def refund(self, intent_ref, amount):
        self.refunds.append((intent_ref, amount))
        return {"intent_ref": intent_ref, "amount": str(amount), "status": "refunded"}


@pytest.fixture
def settings():
    return Settings(DATABASE_URL=TEST_DATABASE_URL)


@pytest.fixture
async def async_engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def services(session_factory, settings, notifier, gateway):
    return build_services(session_factory, settings, notifier=notifier, payments=gateway)


@pytest.fixture
def booking_service(services):
    return services.bookings


@pytest.fixture
def scheduler(services):
    return services.subscriptions


@pytest.fixture
def make_booking_request():
    """Factory for a valid booking request; override any field by keyword."""

    def _make(**overrides):
        data = {
            "services": [CartItem("Interior Only")],
            "addons": [],
            "vehicle": Vehicle(make="Honda", model="Civic", year=2021, color="Blue", type=VehicleType.SEDAN),
            "address": Address(street="12 Main St", city="Springfield", state="NY", zip_code="10001"),
            "scheduled_date": date(2030, 7, 15),
            "scheduled_time": "10:00",
        }
        data.update(overrides)
        return BookingRequest(**data)

    return _make


@pytest.fixture
async def client(async_engine, session_factory, notifier, gateway):
    """
    FastAPI AsyncClient wired to the test database.

    ASGITransport does not run startup handlers; the tables already exist.
    """
    from detailing.main import create_app

    app = create_app(
        engine=async_engine,
        session_factory=session_factory,
        notifier=notifier,
        payments=gateway,
    )
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac
