"""Test configuration and fixtures."""

from datetime import datetime, timedelta
from types import SimpleNamespace
from uuid import UUID

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fleetdesk.core.config import settings
from fleetdesk.core.database import Base
from fleetdesk.core.dependencies import get_db
from fleetdesk.models import (
    Car,
    CarOwnerType,
    Company,
    Customer,
    Driver,
    GlobalBlacklistEntry,
    TenantSettings,
)

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# A Monday well in the future, so no fixture interval touches "now"
BASE_TIME = datetime(2030, 6, 3, 9, 0, 0)


def at(days: float = 0, hours: float = 0) -> datetime:
    """A naive UTC timestamp relative to BASE_TIME."""
    return BASE_TIME + timedelta(days=days, hours=hours)


def make_token(tenant_id: UUID) -> str:
    return jwt.encode({"tenant_id": str(tenant_id)}, settings.bearer_token_secret, algorithm="HS256")


def auth_headers(tenant_id: UUID, idempotency_key: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {make_token(tenant_id)}"}
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    return headers


async def seed_fleet(session: AsyncSession) -> SimpleNamespace:
    """
    Two rental companies and their fleets.

    Returns plain ids and values only, so tests never touch ORM instances a
    rollback inside a service may have expired.
    """
    bali = Company(name="Bali Trans Rental", phone="+62 361 555 0101")
    java = Company(name="Java Fleet", phone="+62 21 555 0202")
    session.add_all([bali, java])
    await session.flush()

    session.add(TenantSettings(tenant_id=bali.id, data={
        "coverage_areas": [
            {"id": "ubud", "name": "Ubud", "extra_price": 50000, "extra_driver_price": 25000},
        ],
        "rental_packages": ["12 hours", "Full day"],
    }))

    avanza = Car(
        tenant_id=bali.id, brand="Toyota", model="Avanza", plate="DK 1234 AB", category="MPV",
        price_per_day=300000, current_odometer=10000,
    )
    innova = Car(
        tenant_id=bali.id, brand="Toyota", model="Innova", plate="DK 5678 CD", category="MPV",
        owner_type=CarOwnerType.PARTNER, partner_name="Pak Made", partner_share_pct=70,
        price_per_day=450000, driver_daily_salary=150000, is_marketplace_ready=True,
    )
    brio = Car(
        tenant_id=java.id, brand="Honda", model="Brio", plate="B 9012 EF", category="City",
        price_per_day=250000, current_odometer=5000, is_marketplace_ready=True,
    )
    wayan = Driver(tenant_id=bali.id, name="Wayan", phone="+62 812 0000 1111", daily_rate=175000)
    budi = Driver(tenant_id=java.id, name="Budi", daily_rate=160000)
    alice = Customer(tenant_id=bali.id, name="Alice Walker", phone="+61 400 000 000", national_id="P1234567")
    mallory = Customer(tenant_id=bali.id, name="Mallory", national_id="9999-0000-1111-2222")
    java_customer = Customer(tenant_id=java.id, name="Charlie", phone="+62 811 222 333")
    session.add_all([avanza, innova, brio, wayan, budi, alice, mallory, java_customer])
    session.add(GlobalBlacklistEntry(
        national_id="9999000011112222", reason="Unreturned vehicle", reported_by_tenant_id=java.id,
    ))
    await session.commit()

    return SimpleNamespace(
        bali_id=bali.id,
        java_id=java.id,
        avanza_id=avanza.id,
        innova_id=innova.id,
        brio_id=brio.id,
        wayan_id=wayan.id,
        budi_id=budi.id,
        alice_id=alice.id,
        mallory_id=mallory.id,
        java_customer_id=java_customer.id,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def fleet(test_session):
    """Seeded tenants, cars, drivers and customers."""
    return await seed_fleet(test_session)


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session):
    """Create a test FastAPI application without lifespan or workers."""
    from fastapi import FastAPI

    from fleetdesk.core.exceptions import ProblemDetailsException, generic_exception_handler, problem_details_handler
    from fleetdesk.routers import (
        booking_router,
        calendar_router,
        health_router,
        ledger_router,
        marketplace_router,
        metrics_router,
        pricing_router,
    )

    app = FastAPI(title="FleetDesk API (Test)", version="1.0.0-test")

    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    for router in (
        health_router,
        calendar_router,
        pricing_router,
        booking_router,
        ledger_router,
        marketplace_router,
        metrics_router,
    ):
        app.include_router(router)

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
