"""Property-based tests for calendar, pricing and ledger invariants."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from itertools import combinations

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fleetdesk.core.database import Base
from fleetdesk.core.exceptions import ResourceConflictError
from fleetdesk.models import Booking, BookingStatus, LedgerEntry
from fleetdesk.schemas.booking import BookingDraft
from fleetdesk.schemas.pricing import PricingSettings
from fleetdesk.services.booking_service import BookingService
from fleetdesk.services.ledger_service import LedgerReconciler
from fleetdesk.services.pricing import calculate_price, rental_days

from conftest import BASE_TIME, seed_fleet

pytestmark = pytest.mark.property

# Strategies for generating test data
offsets = st.integers(min_value=0, max_value=14 * 24)
durations = st.integers(min_value=1, max_value=5 * 24)
reservations = st.tuples(
    offsets,
    durations,
    st.sampled_from(["avanza", "innova"]),
    st.booleans(),  # with the shared driver
    st.booleans(),  # cancel right after creating
)


@asynccontextmanager
async def fresh_database():
    """A private in-memory database, seeded with the standard fleet."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as session:
            fleet = await seed_fleet(session)
            yield session, fleet
    finally:
        await engine.dispose()


def _overlap(a, b) -> bool:
    return a[0] < b[1] and b[0] < a[1]


@settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(requests=st.lists(reservations, min_size=1, max_size=12))
def test_committed_bookings_never_overlap(requests):
    """Whatever sequence of creates and cancels runs, no car or driver is committed twice."""

    async def scenario():
        async with fresh_database() as (session, fleet):
            service = BookingService(session)
            cars = {"avanza": fleet.avanza_id, "innova": fleet.innova_id}
            accepted = 0

            for offset, duration, car, with_driver, cancel in requests:
                start_at = BASE_TIME + timedelta(hours=offset)
                try:
                    outcome = await service.create(fleet.bali_id, BookingDraft(
                        car_id=cars[car],
                        driver_id=fleet.wayan_id if with_driver else None,
                        customer_id=fleet.alice_id,
                        start_at=start_at,
                        end_at=start_at + timedelta(hours=duration),
                    ))
                except ResourceConflictError:
                    continue
                accepted += 1
                if cancel:
                    await service.transition(fleet.bali_id, outcome.booking.id, BookingStatus.CANCELLED)

            result = await session.execute(
                select(Booking.car_id, Booking.driver_id, Booking.start_at, Booking.end_at)
                .where(Booking.status != BookingStatus.CANCELLED)
            )
            live = result.all()
            return accepted, live

    accepted, live = asyncio.run(scenario())

    assert accepted >= 1
    for a, b in combinations(live, 2):
        interval_a, interval_b = (a.start_at, a.end_at), (b.start_at, b.end_at)
        if a.car_id == b.car_id:
            assert not _overlap(interval_a, interval_b)
        if a.driver_id is not None and a.driver_id == b.driver_id:
            assert not _overlap(interval_a, interval_b)


@settings(max_examples=10, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(repeats=st.integers(min_value=1, max_value=5), delivery_fee=st.integers(min_value=0, max_value=200_000))
def test_reconcile_repeats_do_not_change_ledger(repeats, delivery_fee):
    async def scenario():
        async with fresh_database() as (session, fleet):
            service = BookingService(session)
            outcome = await service.create(fleet.bali_id, BookingDraft(
                car_id=fleet.avanza_id,
                customer_id=fleet.alice_id,
                start_at=BASE_TIME,
                end_at=BASE_TIME + timedelta(days=2),
                delivery_fee=delivery_fee,
                amount_paid=10_000_000,
            ))
            booking_id = outcome.booking.id

            async def snapshot():
                result = await session.execute(
                    select(LedgerEntry.reference, LedgerEntry.amount).order_by(LedgerEntry.reference)
                )
                return result.all()

            first = await snapshot()
            reconciler = LedgerReconciler(session)
            for _ in range(repeats):
                await reconciler.reconcile(fleet.bali_id, booking_id)
            return first, await snapshot()

    first, after = asyncio.run(scenario())

    assert after == first
    assert len({reference for reference, _ in after}) == len(after)


@given(
    price_per_day=st.integers(min_value=0, max_value=5_000_000),
    hours=st.integers(min_value=1, max_value=60 * 24),
    with_driver=st.booleans(),
    distance_km=st.one_of(st.none(), st.floats(min_value=0, max_value=2000, allow_nan=False)),
    use_overnight=st.booleans(),
    delivery_fee=st.integers(min_value=0, max_value=1_000_000),
)
def test_price_breakdown_adds_up(price_per_day, hours, with_driver, distance_km, use_overnight, delivery_fee):
    """The total is the sum of its parts and every quote is a rounded-up markup of it."""
    start_at = datetime(2030, 1, 1, 8, 0)
    end_at = start_at + timedelta(hours=hours)

    breakdown = calculate_price(
        price_per_day=price_per_day,
        start_at=start_at,
        end_at=end_at,
        settings=PricingSettings(),
        with_driver=with_driver,
        distance_km=distance_km,
        use_overnight=use_overnight,
        delivery_fee=delivery_fee,
    )

    days = rental_days(start_at, end_at)
    assert days >= 1
    assert 24 * (days - 1) < hours <= 24 * days

    assert breakdown.total == (
        breakdown.base_rental + breakdown.season_surcharge + breakdown.area_surcharge
        + breakdown.driver_cost + breakdown.overnight_fee + breakdown.delivery_fee
        + breakdown.overdue_fee + breakdown.extra_fee
    )
    for quote in (breakdown.agent_price, breakdown.customer_price):
        assert quote % 1000 == 0
        assert quote >= breakdown.total
    if not with_driver:
        assert breakdown.driver_cost == 0
        assert breakdown.overnight_fee == 0
