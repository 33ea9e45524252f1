"""Unit tests for booking creation, updates, payments and completion."""

import pytest
from sqlalchemy import func, select

from fleetdesk.core.exceptions import (
    BlacklistedCustomerError,
    ChecklistRequiredError,
    NotFoundError,
    ResourceConflictError,
    ValidationError,
)
from fleetdesk.models import (
    Booking,
    BookingStatus,
    Car,
    DeferredPaymentPlan,
    EntryStatus,
    LedgerCategory,
    LedgerEntry,
    PaymentMethod,
)
from fleetdesk.schemas.booking import BookingDraft, BookingUpdate, Checklist
from fleetdesk.services.booking_service import BookingService, installment_amount

from conftest import at


async def _count_bookings(session) -> int:
    result = await session.execute(select(func.count()).select_from(Booking))
    return result.scalar_one()


async def _entries_for(session, booking_id) -> list[tuple[str, int, str]]:
    result = await session.execute(
        select(LedgerEntry.category, LedgerEntry.amount, LedgerEntry.status)
        .where(LedgerEntry.booking_id == booking_id)
        .order_by(LedgerEntry.category)
    )
    return [tuple(row) for row in result.all()]


@pytest.mark.asyncio
async def test_create_booking_prices_and_reconciles(test_session, fleet):
    """A fully paid booking is priced by the engine and its income posted."""
    service = BookingService(test_session)

    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id,
        customer_id=fleet.alice_id,
        start_at=at(0),
        end_at=at(3),
        initial_status="CONFIRMED",
        amount_paid=900_000,
    ))

    booking = outcome.booking
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.total_price == 900_000
    assert booking.rental_days == 3
    assert booking.ledger_synced is True
    assert outcome.ledger.posted == [LedgerCategory.RENTAL_INCOME]

    entries = await _entries_for(test_session, booking.id)
    assert entries == [(LedgerCategory.RENTAL_INCOME.value, 900_000, EntryStatus.PAID.value)]


@pytest.mark.asyncio
async def test_unpaid_booking_posts_nothing(test_session, fleet):
    service = BookingService(test_session)

    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id,
        customer_id=fleet.alice_id,
        start_at=at(0),
        end_at=at(3),
    ))

    assert outcome.booking.status == BookingStatus.PENDING
    assert outcome.ledger.posted == []
    assert await _entries_for(test_session, outcome.booking.id) == []


@pytest.mark.asyncio
async def test_empty_interval_is_rejected(test_session, fleet):
    service = BookingService(test_session)

    with pytest.raises(ValidationError):
        await service.create(fleet.bali_id, BookingDraft(
            car_id=fleet.avanza_id,
            customer_id=fleet.alice_id,
            start_at=at(3),
            end_at=at(3),
        ))


@pytest.mark.asyncio
async def test_car_of_another_tenant_is_not_found(test_session, fleet):
    service = BookingService(test_session)

    with pytest.raises(NotFoundError):
        await service.create(fleet.bali_id, BookingDraft(
            car_id=fleet.brio_id,
            customer_id=fleet.alice_id,
            start_at=at(0),
            end_at=at(1),
        ))

    assert await _count_bookings(test_session) == 0


@pytest.mark.asyncio
async def test_overlapping_booking_conflicts(test_session, fleet):
    """The same car cannot be committed twice over overlapping intervals."""
    service = BookingService(test_session)
    await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(3),
    ))

    with pytest.raises(ResourceConflictError) as exc_info:
        await service.create(fleet.bali_id, BookingDraft(
            car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(2), end_at=at(5),
        ))

    assert exc_info.value.retryable is True
    assert await _count_bookings(test_session) == 1


@pytest.mark.asyncio
async def test_back_to_back_bookings_do_not_conflict(test_session, fleet):
    """Intervals are half-open: one rental may start exactly when the previous ends."""
    service = BookingService(test_session)
    await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(3),
    ))
    await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(3), end_at=at(5),
    ))

    assert await _count_bookings(test_session) == 2


@pytest.mark.asyncio
async def test_driver_double_booking_conflicts(test_session, fleet):
    service = BookingService(test_session)
    await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, driver_id=fleet.wayan_id, customer_id=fleet.alice_id,
        start_at=at(0), end_at=at(3),
    ))

    with pytest.raises(ResourceConflictError):
        await service.create(fleet.bali_id, BookingDraft(
            car_id=fleet.innova_id, driver_id=fleet.wayan_id, customer_id=fleet.alice_id,
            start_at=at(1), end_at=at(2),
        ))


@pytest.mark.asyncio
async def test_cancelled_booking_frees_the_car(test_session, fleet):
    service = BookingService(test_session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(3),
    ))
    await service.transition(fleet.bali_id, outcome.booking.id, BookingStatus.CANCELLED)

    replacement = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(1), end_at=at(2),
    ))

    assert replacement.booking.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_blacklisted_customer_leaves_no_booking(test_session, fleet):
    """A registry hit on the normalized national ID rejects the booking outright."""
    service = BookingService(test_session)

    with pytest.raises(BlacklistedCustomerError) as exc_info:
        await service.create(fleet.bali_id, BookingDraft(
            car_id=fleet.avanza_id, customer_id=fleet.mallory_id, start_at=at(0), end_at=at(3),
        ))

    assert exc_info.value.status_code == 403
    assert await _count_bookings(test_session) == 0


@pytest.mark.asyncio
async def test_completion_updates_odometer_and_posts_expenses_once(test_session, fleet):
    """Completing a driven rental posts one salary and one delivery entry and moves the odometer."""
    service = BookingService(test_session)

    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id,
        driver_id=fleet.wayan_id,
        customer_id=fleet.alice_id,
        start_at=at(0),
        end_at=at(3),
        initial_status="CONFIRMED",
        delivery_fee=50_000,
    ))
    booking_id = outcome.booking.id
    # 3 x 300,000 rental + 3 x 175,000 driver + 50,000 delivery
    assert outcome.booking.total_price == 1_475_000

    await service.update_payment(fleet.bali_id, booking_id)
    await service.transition(
        fleet.bali_id, booking_id, BookingStatus.ACTIVE, checklist=Checklist(odometer=10_000)
    )
    completed = await service.transition(
        fleet.bali_id, booking_id, BookingStatus.COMPLETED, checklist=Checklist(odometer=10_500)
    )

    assert completed.booking.status == BookingStatus.COMPLETED
    assert completed.booking.actual_return_at is not None

    odometer = await test_session.scalar(select(Car.current_odometer).where(Car.id == fleet.avanza_id))
    assert odometer == 10_500

    # Reconciling again changes nothing
    again = await service.ledger.reconcile(fleet.bali_id, booking_id)
    assert again.posted == []

    entries = await _entries_for(test_session, booking_id)
    categories = [category for category, _, _ in entries]
    assert categories.count(LedgerCategory.DRIVER_SALARY.value) == 1
    assert categories.count(LedgerCategory.DELIVERY_REIMBURSEMENT.value) == 1
    assert categories.count(LedgerCategory.RENTAL_INCOME.value) == 1
    assert LedgerCategory.PARTNER_SHARE.value not in categories

    amounts = {category: amount for category, amount, _ in entries}
    assert amounts[LedgerCategory.DRIVER_SALARY.value] == 525_000
    assert amounts[LedgerCategory.DELIVERY_REIMBURSEMENT.value] == 50_000


@pytest.mark.asyncio
async def test_partner_car_completion_posts_partner_share(test_session, fleet):
    service = BookingService(test_session)

    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.innova_id,
        customer_id=fleet.alice_id,
        start_at=at(0),
        end_at=at(2),
        total_price=1_000_001,
        amount_paid=1_000_001,
    ))
    booking_id = outcome.booking.id

    await service.transition(fleet.bali_id, booking_id, BookingStatus.ACTIVE, checklist=Checklist(odometer=1))
    await service.transition(fleet.bali_id, booking_id, BookingStatus.COMPLETED, checklist=Checklist(odometer=300))

    amounts = {category: amount for category, amount, _ in await _entries_for(test_session, booking_id)}
    # 70% of 1,000,001 rounded up to the next thousand
    assert amounts[LedgerCategory.PARTNER_SHARE.value] == 701_000


@pytest.mark.asyncio
async def test_deferred_payment_creates_installment_plan(test_session, fleet):
    """Deferred bookings are confirmed immediately and their income posted as pending."""
    service = BookingService(test_session)

    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id,
        customer_id=fleet.alice_id,
        start_at=at(0),
        end_at=at(3),
        payment_method=PaymentMethod.DEFERRED,
        deferred_term_months=3,
        total_price=1_000_000,
    ))

    assert outcome.booking.status == BookingStatus.CONFIRMED

    plan = await test_session.scalar(
        select(DeferredPaymentPlan).where(DeferredPaymentPlan.booking_id == outcome.booking.id)
    )
    assert plan.term_months == 3
    assert plan.monthly_installment == 333_334

    entries = await _entries_for(test_session, outcome.booking.id)
    assert entries == [(LedgerCategory.RENTAL_INCOME.value, 1_000_000, EntryStatus.PENDING.value)]


@pytest.mark.asyncio
async def test_deferred_payment_requires_known_term(test_session, fleet):
    service = BookingService(test_session)

    with pytest.raises(ValidationError):
        await service.create(fleet.bali_id, BookingDraft(
            car_id=fleet.avanza_id,
            customer_id=fleet.alice_id,
            start_at=at(0),
            end_at=at(3),
            payment_method=PaymentMethod.DEFERRED,
            deferred_term_months=5,
        ))


def test_installment_rounds_up():
    assert installment_amount(900_000, 3) == 300_000
    assert installment_amount(1_000_000, 3) == 333_334
    assert installment_amount(1_000_000, 12) == 83_334


@pytest.mark.asyncio
async def test_payment_without_amount_settles_in_full(test_session, fleet):
    service = BookingService(test_session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(3),
    ))

    paid = await service.update_payment(fleet.bali_id, outcome.booking.id)

    assert paid.booking.amount_paid == 900_000
    assert paid.booking.paid_in_full
    assert paid.ledger.posted == [LedgerCategory.RENTAL_INCOME]


@pytest.mark.asyncio
async def test_update_requotes_longer_interval(test_session, fleet):
    service = BookingService(test_session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(3),
    ))

    updated = await service.update(fleet.bali_id, outcome.booking.id, BookingUpdate(end_at=at(4)))

    assert updated.booking.rental_days == 4
    assert updated.booking.total_price == 1_200_000


@pytest.mark.asyncio
async def test_update_into_taken_slot_conflicts(test_session, fleet):
    service = BookingService(test_session)
    first = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(3),
    ))
    await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(5), end_at=at(7),
    ))
    first_id = first.booking.id

    with pytest.raises(ResourceConflictError):
        await service.update(fleet.bali_id, first_id, BookingUpdate(end_at=at(6)))

    booking = await service.get(fleet.bali_id, first_id)
    assert booking.end_at == at(3)


@pytest.mark.asyncio
async def test_update_ignores_own_interval(test_session, fleet):
    """Shortening a booking does not conflict with itself."""
    service = BookingService(test_session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(3),
    ))

    updated = await service.update(fleet.bali_id, outcome.booking.id, BookingUpdate(start_at=at(1)))

    assert updated.booking.total_price == 600_000


@pytest.mark.asyncio
async def test_completed_booking_cannot_be_rescheduled(test_session, fleet):
    service = BookingService(test_session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(3),
    ))
    booking_id = outcome.booking.id
    await service.transition(fleet.bali_id, booking_id, BookingStatus.ACTIVE, checklist=Checklist(odometer=10_000))
    await service.transition(fleet.bali_id, booking_id, BookingStatus.COMPLETED, checklist=Checklist(odometer=10_100))

    with pytest.raises(ValidationError):
        await service.update(fleet.bali_id, booking_id, BookingUpdate(end_at=at(4)))


async def _picked_up(session, fleet):
    service = BookingService(session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(2),
    ))
    booking_id = outcome.booking.id
    await service.transition(fleet.bali_id, booking_id, BookingStatus.ACTIVE, checklist=Checklist(odometer=10_000))
    return service, booking_id


@pytest.mark.asyncio
async def test_active_booking_keeps_valid_pickup_checklist(test_session, fleet):
    """An ACTIVE booking cannot have its pickup reading zeroed or removed."""
    service, booking_id = await _picked_up(test_session, fleet)

    with pytest.raises(ChecklistRequiredError):
        await service.update(fleet.bali_id, booking_id, BookingUpdate(pickup_checklist=Checklist(odometer=0)))
    with pytest.raises(ChecklistRequiredError):
        await service.update(fleet.bali_id, booking_id, BookingUpdate(pickup_checklist=None))

    booking = await service.get(fleet.bali_id, booking_id)
    assert booking.pickup_checklist["odometer"] == 10_000

    corrected = await service.update(
        fleet.bali_id, booking_id, BookingUpdate(pickup_checklist=Checklist(odometer=10_050, fuel_level="full"))
    )
    assert corrected.booking.pickup_checklist["odometer"] == 10_050


@pytest.mark.asyncio
async def test_completed_booking_return_reading_stays_above_pickup(test_session, fleet):
    service, booking_id = await _picked_up(test_session, fleet)
    await service.transition(fleet.bali_id, booking_id, BookingStatus.COMPLETED, checklist=Checklist(odometer=10_500))

    with pytest.raises(ChecklistRequiredError):
        await service.update(fleet.bali_id, booking_id, BookingUpdate(return_checklist=Checklist(odometer=5)))
    with pytest.raises(ChecklistRequiredError):
        await service.update(fleet.bali_id, booking_id, BookingUpdate(return_checklist=None))
    # Raising the pickup reading past the saved return reading is caught too
    with pytest.raises(ChecklistRequiredError):
        await service.update(fleet.bali_id, booking_id, BookingUpdate(pickup_checklist=Checklist(odometer=11_000)))

    booking = await service.get(fleet.bali_id, booking_id)
    assert booking.return_checklist["odometer"] == 10_500
    assert booking.pickup_checklist["odometer"] == 10_000

    both = await service.update(fleet.bali_id, booking_id, BookingUpdate(
        pickup_checklist=Checklist(odometer=11_000),
        return_checklist=Checklist(odometer=11_400),
    ))
    assert both.booking.return_checklist["odometer"] == 11_400


@pytest.mark.asyncio
async def test_pending_booking_checklist_can_be_saved_early(test_session, fleet):
    service = BookingService(test_session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id, customer_id=fleet.alice_id, start_at=at(0), end_at=at(2),
    ))

    saved = await service.update(
        fleet.bali_id, outcome.booking.id, BookingUpdate(pickup_checklist=Checklist(odometer=0))
    )

    assert saved.booking.status == BookingStatus.PENDING
    assert saved.booking.pickup_checklist["odometer"] == 0


@pytest.mark.asyncio
async def test_settling_deferred_booking_marks_income_paid(test_session, fleet):
    """The pending income of a deferred booking turns paid once it is settled."""
    service = BookingService(test_session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id,
        customer_id=fleet.alice_id,
        start_at=at(0),
        end_at=at(3),
        payment_method=PaymentMethod.DEFERRED,
        deferred_term_months=3,
        total_price=1_000_000,
    ))
    booking_id = outcome.booking.id

    partly = await service.update_payment(fleet.bali_id, booking_id, amount_paid=400_000)
    assert partly.ledger.posted == []
    assert await _entries_for(test_session, booking_id) == [
        (LedgerCategory.RENTAL_INCOME.value, 1_000_000, EntryStatus.PENDING.value)
    ]

    await service.update_payment(fleet.bali_id, booking_id)

    assert await _entries_for(test_session, booking_id) == [
        (LedgerCategory.RENTAL_INCOME.value, 1_000_000, EntryStatus.PAID.value)
    ]
