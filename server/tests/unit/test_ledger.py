"""Unit tests for the ledger reconciler."""

import pytest
from sqlalchemy import func, select

from fleetdesk.core.database import utcnow
from fleetdesk.core.exceptions import NotFoundError
from fleetdesk.models import Booking, BookingStatus, LedgerCategory, LedgerEntry, make_reference
from fleetdesk.schemas.booking import BookingDraft, Checklist
from fleetdesk.schemas.ledger import ListLedgerRequest
from fleetdesk.services.booking_service import BookingService
from fleetdesk.services.ledger_service import LedgerReconciler

from conftest import at


async def _ledger_rows(session) -> list[tuple[str, int]]:
    result = await session.execute(
        select(LedgerEntry.reference, LedgerEntry.amount).order_by(LedgerEntry.reference)
    )
    return [tuple(row) for row in result.all()]


async def _completed_driven_rental(session, fleet):
    """A paid, completed rental with driver and delivery. Returns the booking id."""
    service = BookingService(session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id,
        driver_id=fleet.wayan_id,
        customer_id=fleet.alice_id,
        start_at=at(0),
        end_at=at(3),
        delivery_fee=50_000,
        amount_paid=1_475_000,
    ))
    booking_id = outcome.booking.id
    await service.transition(fleet.bali_id, booking_id, BookingStatus.ACTIVE, checklist=Checklist(odometer=10_000))
    await service.transition(fleet.bali_id, booking_id, BookingStatus.COMPLETED, checklist=Checklist(odometer=10_200))
    return booking_id


def test_reference_format():
    reference = make_reference("abc", LedgerCategory.DRIVER_SALARY)
    assert reference == f"[REF:abc:{LedgerCategory.DRIVER_SALARY.value}]"


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(test_session, fleet):
    """Reconciling any number of times leaves the ledger as after the first."""
    booking_id = await _completed_driven_rental(test_session, fleet)
    reconciler = LedgerReconciler(test_session)

    before = await _ledger_rows(test_session)
    for _ in range(3):
        result = await reconciler.reconcile(fleet.bali_id, booking_id)
        assert result.posted == []
        assert result.synced is True
        assert len(result.already_posted) == 3

    assert await _ledger_rows(test_session) == before
    assert len(before) == 3


@pytest.mark.asyncio
async def test_entries_carry_booking_reference(test_session, fleet):
    booking_id = await _completed_driven_rental(test_session, fleet)

    result = await test_session.execute(
        select(LedgerEntry.category, LedgerEntry.reference, LedgerEntry.description)
        .where(LedgerEntry.booking_id == booking_id)
    )
    for category, reference, description in result.all():
        assert reference == f"[REF:{booking_id}:{category}]"
        assert reference in description


@pytest.mark.asyncio
async def test_duplicate_insert_is_suppressed(test_session, fleet, monkeypatch):
    """When the pre-check misses, the unique reference constraint still keeps one entry."""
    booking_id = await _completed_driven_rental(test_session, fleet)
    before = await _ledger_rows(test_session)

    async def find_nothing(self, tenant_id, reference):
        return None

    monkeypatch.setattr(LedgerReconciler, "_find_entry", find_nothing)

    result = await LedgerReconciler(test_session).reconcile(fleet.bali_id, booking_id)

    assert result.posted == []
    assert len(result.already_posted) == 3
    assert result.synced is True
    assert await _ledger_rows(test_session) == before


@pytest.mark.asyncio
async def test_cancelled_booking_posts_no_income(test_session, fleet):
    service = BookingService(test_session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(1),
    ))
    await service.transition(fleet.bali_id, outcome.booking.id, BookingStatus.CANCELLED)
    await service.update_payment(fleet.bali_id, outcome.booking.id)

    assert await _ledger_rows(test_session) == []


@pytest.mark.asyncio
async def test_reconcile_unknown_booking(test_session, fleet):
    booking_id = await _completed_driven_rental(test_session, fleet)

    with pytest.raises(NotFoundError):
        await LedgerReconciler(test_session).reconcile(fleet.java_id, booking_id)


@pytest.mark.asyncio
async def test_summary_totals(test_session, fleet):
    await _completed_driven_rental(test_session, fleet)
    reconciler = LedgerReconciler(test_session)

    summary = await reconciler.summary(fleet.bali_id)
    assert summary.total_income == 1_475_000
    assert summary.total_expense == 575_000
    assert summary.balance == 900_000

    today = utcnow().date()
    assert await reconciler.summary(fleet.bali_id, year=today.year, month=today.month) == summary

    empty = await reconciler.summary(fleet.bali_id, year=2001, month=1)
    assert (empty.total_income, empty.total_expense, empty.balance) == (0, 0, 0)

    other_tenant = await reconciler.summary(fleet.java_id)
    assert other_tenant.balance == 0


@pytest.mark.asyncio
async def test_list_entries_filters(test_session, fleet):
    booking_id = await _completed_driven_rental(test_session, fleet)
    reconciler = LedgerReconciler(test_session)

    entries = await reconciler.list_entries(fleet.bali_id, ListLedgerRequest(booking_id=booking_id))
    assert len(entries) == 3
    assert {entry.entry_date for entry in entries} == {utcnow().date()}

    assert await reconciler.list_entries(fleet.java_id, ListLedgerRequest()) == []


@pytest.mark.asyncio
async def test_sweep_reconciles_unsynced_bookings(test_session, fleet):
    """Bookings written without a reconcile are picked up by the sweep."""
    booking = Booking(
        tenant_id=fleet.bali_id,
        car_id=fleet.avanza_id,
        customer_id=fleet.alice_id,
        start_at=at(10),
        end_at=at(12),
        status=BookingStatus.CONFIRMED,
        total_price=600_000,
        amount_paid=600_000,
        rental_days=2,
        ledger_synced=False,
    )
    test_session.add(booking)
    await test_session.commit()
    booking_id = booking.id

    reconciler = LedgerReconciler(test_session)
    assert await reconciler.sweep(batch_size=10) == 1
    assert await reconciler.sweep(batch_size=10) == 0

    synced = await test_session.scalar(select(Booking.ledger_synced).where(Booking.id == booking_id))
    assert synced is True

    count = await test_session.scalar(
        select(func.count()).select_from(LedgerEntry).where(LedgerEntry.booking_id == booking_id)
    )
    assert count == 1
