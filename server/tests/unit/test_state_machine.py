"""Unit tests for the booking status state machine."""

import pytest

from fleetdesk.core.exceptions import ChecklistRequiredError, IllegalTransitionError
from fleetdesk.models import BookingStatus
from fleetdesk.schemas.booking import BookingDraft, Checklist
from fleetdesk.services.booking_service import BookingService, can_transition

from conftest import at

LEGAL = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED),
    (BookingStatus.PENDING, BookingStatus.ACTIVE),
    (BookingStatus.PENDING, BookingStatus.CANCELLED),
    (BookingStatus.CONFIRMED, BookingStatus.ACTIVE),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    (BookingStatus.ACTIVE, BookingStatus.COMPLETED),
}


@pytest.mark.parametrize("current", list(BookingStatus))
@pytest.mark.parametrize("target", list(BookingStatus))
def test_transition_table(current, target):
    """Exactly the six listed edges are allowed; everything else, self-loops included, is not."""
    assert can_transition(current, target) == ((current, target) in LEGAL)


def test_terminal_states_have_no_exits():
    for target in BookingStatus:
        assert not can_transition(BookingStatus.COMPLETED, target)
        assert not can_transition(BookingStatus.CANCELLED, target)


def test_plain_strings_are_accepted():
    """Statuses read back from the database come as plain strings."""
    assert can_transition("PENDING", BookingStatus.CONFIRMED)
    assert not can_transition("ACTIVE", BookingStatus.CANCELLED)


async def _pending_booking(test_session, fleet):
    service = BookingService(test_session)
    outcome = await service.create(fleet.bali_id, BookingDraft(
        car_id=fleet.avanza_id,
        customer_id=fleet.alice_id,
        start_at=at(1),
        end_at=at(3),
    ))
    return service, outcome.booking.id


@pytest.mark.asyncio
async def test_illegal_transition_is_rejected(test_session, fleet):
    """PENDING cannot jump straight to COMPLETED."""
    service, booking_id = await _pending_booking(test_session, fleet)

    with pytest.raises(IllegalTransitionError) as exc_info:
        await service.transition(fleet.bali_id, booking_id, BookingStatus.COMPLETED)

    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "ILLEGAL_TRANSITION"

    booking = await service.get(fleet.bali_id, booking_id)
    assert booking.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_cancelled_booking_cannot_be_reactivated(test_session, fleet):
    service, booking_id = await _pending_booking(test_session, fleet)

    await service.transition(fleet.bali_id, booking_id, BookingStatus.CANCELLED)

    with pytest.raises(IllegalTransitionError):
        await service.transition(fleet.bali_id, booking_id, BookingStatus.CONFIRMED)


@pytest.mark.asyncio
async def test_activation_requires_pickup_checklist(test_session, fleet):
    service, booking_id = await _pending_booking(test_session, fleet)

    with pytest.raises(ChecklistRequiredError):
        await service.transition(fleet.bali_id, booking_id, BookingStatus.ACTIVE)

    with pytest.raises(ChecklistRequiredError):
        await service.transition(
            fleet.bali_id, booking_id, BookingStatus.ACTIVE, checklist=Checklist(odometer=0)
        )

    outcome = await service.transition(
        fleet.bali_id, booking_id, BookingStatus.ACTIVE, checklist=Checklist(odometer=10_000, fuel_level="full")
    )
    assert outcome.booking.status == BookingStatus.ACTIVE
    assert outcome.booking.pickup_checklist["odometer"] == 10_000


@pytest.mark.asyncio
async def test_return_odometer_cannot_go_backwards(test_session, fleet):
    service, booking_id = await _pending_booking(test_session, fleet)
    await service.transition(
        fleet.bali_id, booking_id, BookingStatus.ACTIVE, checklist=Checklist(odometer=10_000)
    )

    with pytest.raises(ChecklistRequiredError):
        await service.transition(fleet.bali_id, booking_id, BookingStatus.COMPLETED)

    with pytest.raises(ChecklistRequiredError):
        await service.transition(
            fleet.bali_id, booking_id, BookingStatus.COMPLETED, checklist=Checklist(odometer=9_999)
        )

    booking = await service.get(fleet.bali_id, booking_id)
    assert booking.status == BookingStatus.ACTIVE
