"""Concurrency tests for bookings, ledger posting and marketplace resolution."""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fleetdesk.core.database import Base, utcnow
from fleetdesk.core.exceptions import AlreadyResolvedError, ResourceConflictError
from fleetdesk.models import Booking, BookingStatus, LedgerEntry, RequestStatus
from fleetdesk.schemas.booking import BookingDraft, Checklist
from fleetdesk.schemas.marketplace import SendRequest
from fleetdesk.services.booking_service import BookingService
from fleetdesk.services.ledger_service import LedgerReconciler
from fleetdesk.services.marketplace_service import MarketplaceBroker

from conftest import at, seed_fleet

pytestmark = pytest.mark.concurrency


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    Sessions on a file-backed database.

    Each session gets its own connection, so concurrent tasks interleave the
    way separate requests do.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def fleet(session_factory):
    async with session_factory() as session:
        return await seed_fleet(session)


@pytest.mark.asyncio
async def test_concurrent_creates_exactly_one_wins(session_factory, fleet):
    """Of many overlapping creates for one car, exactly one commits."""
    num_concurrent_requests = 10

    async def create(index: int):
        async with session_factory() as session:
            try:
                outcome = await BookingService(session).create(fleet.bali_id, BookingDraft(
                    car_id=fleet.avanza_id,
                    customer_id=fleet.alice_id,
                    start_at=at(0, hours=index),
                    end_at=at(2, hours=index),
                ))
                return outcome.booking.id
            except ResourceConflictError:
                return None

    results = await asyncio.gather(*(create(i) for i in range(num_concurrent_requests)))

    winners = [booking_id for booking_id in results if booking_id is not None]
    assert len(winners) == 1

    async with session_factory() as session:
        count = await session.scalar(select(func.count()).select_from(Booking))
    assert count == 1


@pytest.mark.asyncio
async def test_concurrent_creates_on_shared_driver(session_factory, fleet):
    """Two cars, one driver: only one of the overlapping rentals gets the driver."""

    async def create(car_id):
        async with session_factory() as session:
            try:
                await BookingService(session).create(fleet.bali_id, BookingDraft(
                    car_id=car_id,
                    driver_id=fleet.wayan_id,
                    customer_id=fleet.alice_id,
                    start_at=at(0),
                    end_at=at(3),
                ))
                return True
            except ResourceConflictError:
                return False

    results = await asyncio.gather(create(fleet.avanza_id), create(fleet.innova_id))

    assert sorted(results) == [False, True]


@pytest.mark.asyncio
async def test_concurrent_creates_on_different_cars_all_succeed(session_factory, fleet):
    async def create(car_id):
        async with session_factory() as session:
            outcome = await BookingService(session).create(fleet.bali_id, BookingDraft(
                car_id=car_id,
                customer_id=fleet.alice_id,
                start_at=at(0),
                end_at=at(3),
            ))
            return outcome.booking.status

    statuses = await asyncio.gather(create(fleet.avanza_id), create(fleet.innova_id))

    assert statuses == [BookingStatus.PENDING, BookingStatus.PENDING]


@pytest.mark.asyncio
async def test_concurrent_reconciles_post_each_entry_once(session_factory, fleet, monkeypatch):
    """
    Reconciles racing on one booking each see nothing posted yet; the unique
    reference still lets exactly one insert per category through.
    """
    async with session_factory() as session:
        service = BookingService(session)
        outcome = await service.create(fleet.bali_id, BookingDraft(
            car_id=fleet.avanza_id,
            driver_id=fleet.wayan_id,
            customer_id=fleet.alice_id,
            start_at=at(0),
            end_at=at(3),
            delivery_fee=50_000,
        ))
        booking_id = outcome.booking.id
        await service.transition(fleet.bali_id, booking_id, BookingStatus.ACTIVE, checklist=Checklist(odometer=10_000))
        await service.transition(fleet.bali_id, booking_id, BookingStatus.COMPLETED, checklist=Checklist(odometer=10_400))

    # Fully paid only now, so the income entry is due but not yet posted
    async with session_factory() as session:
        await session.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(amount_paid=Booking.total_price, ledger_synced=False)
        )
        await session.commit()

    async def find_nothing(self, tenant_id, reference):
        return None

    monkeypatch.setattr(LedgerReconciler, "_find_entry", find_nothing)

    async def reconcile():
        async with session_factory() as session:
            return await LedgerReconciler(session).reconcile(fleet.bali_id, booking_id)

    results = await asyncio.gather(*(reconcile() for _ in range(5)))

    posted = [category for result in results for category in result.posted]
    assert posted.count("RENTAL_INCOME") == 1

    async with session_factory() as session:
        result = await session.execute(
            select(LedgerEntry.category, func.count())
            .where(LedgerEntry.booking_id == booking_id)
            .group_by(LedgerEntry.category)
        )
        counts = dict(result.all())

    assert counts == {
        "RENTAL_INCOME": 1,
        "DRIVER_SALARY": 1,
        "DELIVERY_REIMBURSEMENT": 1,
    }


@pytest.mark.asyncio
async def test_response_and_expiry_race(session_factory, fleet):
    """An approval racing the expiry sweep: exactly one of them takes effect."""
    request_ids = []
    async with session_factory() as session:
        broker = MarketplaceBroker(session, request_ttl=timedelta(minutes=5))
        for day in range(5):
            request = await broker.send_request(fleet.java_id, SendRequest(
                supplier_tenant_id=fleet.bali_id,
                car_id=fleet.innova_id,
                start_at=at(day * 2),
                end_at=at(day * 2 + 1),
                quoted_price=500_000,
            ))
            request_ids.append(request.id)

    after_expiry = utcnow() + timedelta(minutes=10)

    async def approve(request_id):
        async with session_factory() as session:
            try:
                await MarketplaceBroker(session).respond_to_request(request_id, "APPROVE", fleet.bali_id)
                return True
            except AlreadyResolvedError:
                return False

    async def expire():
        async with session_factory() as session:
            return await MarketplaceBroker(session).expire_stale_requests(now=after_expiry)

    results = await asyncio.gather(expire(), *(approve(request_id) for request_id in request_ids))
    expired_count, approvals = results[0], results[1:]

    async with session_factory() as session:
        broker = MarketplaceBroker(session)
        statuses = [(await broker.get_request(request_id)).status for request_id in request_ids]

    for approved, status in zip(approvals, statuses):
        assert status == (RequestStatus.APPROVED if approved else RequestStatus.EXPIRED)
    assert expired_count == statuses.count(RequestStatus.EXPIRED)
    assert expired_count + sum(approvals) == len(request_ids)
