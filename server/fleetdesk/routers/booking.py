"""Booking router for booking lifecycle operations."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentTenant, DatabaseSession, IdempotencyKey
from ..core.exceptions import ProblemDetailsException
from ..schemas.booking import (
    Booking,
    BookingDraft,
    BookingMutationResponse,
    GetBookingRequest,
    PaymentUpdateRequest,
    TransitionRequest,
    UpdateBookingRequest,
)
from ..schemas.common import PROBLEM_RESPONSES
from ..services.booking_service import BookingOutcome, BookingService
from .common import handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/booking", tags=["booking"], responses=PROBLEM_RESPONSES)


def _optional_str(value) -> Optional[str]:
    return str(value) if value is not None else None


def _convert_booking_to_schema(booking_model) -> Booking:
    """Convert booking model to schema."""
    return Booking(
        id=str(booking_model.id),
        tenant_id=str(booking_model.tenant_id),
        car_id=str(booking_model.car_id),
        customer_id=str(booking_model.customer_id),
        driver_id=_optional_str(booking_model.driver_id),
        start_at=booking_model.start_at,
        end_at=booking_model.end_at,
        status=booking_model.status,
        total_price=booking_model.total_price,
        amount_paid=booking_model.amount_paid,
        paid_in_full=booking_model.paid_in_full,
        payment_method=booking_model.payment_method,
        deferred_term_months=booking_model.deferred_term_months,
        delivery_fee=booking_model.delivery_fee,
        overdue_fee=booking_model.overdue_fee,
        extra_fee=booking_model.extra_fee,
        extra_fee_reason=booking_model.extra_fee_reason,
        deposit_type=booking_model.deposit_type,
        deposit_description=booking_model.deposit_description,
        deposit_value=booking_model.deposit_value,
        coverage_area_id=booking_model.coverage_area_id,
        distance_km=booking_model.distance_km,
        use_overnight=booking_model.use_overnight,
        rental_days=booking_model.rental_days,
        driver_daily_rate=booking_model.driver_daily_rate,
        pickup_checklist=booking_model.pickup_checklist,
        return_checklist=booking_model.return_checklist,
        actual_return_at=booking_model.actual_return_at,
        notes=booking_model.notes,
        ledger_synced=booking_model.ledger_synced,
        marketplace_request_id=_optional_str(booking_model.marketplace_request_id),
        marketplace_side=booking_model.marketplace_side,
        created_at=booking_model.created_at,
        updated_at=booking_model.updated_at,
    )


def _convert_outcome_to_dict(outcome: BookingOutcome) -> dict:
    response_data = BookingMutationResponse(
        booking=_convert_booking_to_schema(outcome.booking),
        ledger=outcome.ledger,
    )
    return response_data.model_dump(mode="json")


@router.post("/create", response_model=BookingMutationResponse)
async def create_booking(
    request: BookingDraft,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
    idempotency_key: Optional[str] = IdempotencyKey,
) -> JSONResponse:
    """
    Create a booking after checking the calendar, the blacklist and the price.

    Idempotent when an Idempotency-Key header is sent.
    """
    booking_service = BookingService(db)

    async def operation():
        outcome = await booking_service.create(tenant_id, request)

        logger.info(
            "Booking created successfully",
            extra={
                "booking_id": str(outcome.booking.id),
                "car_id": str(request.car_id),
                "total_price": outcome.booking.total_price,
                "ledger_synced": outcome.ledger.synced,
            }
        )

        return _convert_outcome_to_dict(outcome)

    try:
        return await handle_idempotent_operation(
            method="booking/create",
            tenant_id=tenant_id,
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db,
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking creation",
            extra={"car_id": str(request.car_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/get", response_model=Booking)
async def get_booking(
    request: GetBookingRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """
    Get booking details.

    This is a read operation and does not require idempotency.
    """
    booking_service = BookingService(db)

    try:
        booking = await booking_service.get(tenant_id, request.booking_id)
        response_data = _convert_booking_to_schema(booking)

        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking retrieval",
            extra={"booking_id": str(request.booking_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/update", response_model=BookingMutationResponse)
async def update_booking(
    request: UpdateBookingRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
    idempotency_key: Optional[str] = IdempotencyKey,
) -> JSONResponse:
    """
    Apply a partial update. Changing car, driver or interval re-checks the calendar.

    Idempotent when an Idempotency-Key header is sent.
    """
    booking_service = BookingService(db)

    async def operation():
        outcome = await booking_service.update(tenant_id, request.booking_id, request.changes)

        logger.info(
            "Booking updated successfully",
            extra={
                "booking_id": str(request.booking_id),
                "fields": sorted(request.changes.model_fields_set),
            }
        )

        return _convert_outcome_to_dict(outcome)

    try:
        return await handle_idempotent_operation(
            method="booking/update",
            tenant_id=tenant_id,
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json", exclude_unset=True),
            operation_func=operation,
            db=db,
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking update",
            extra={"booking_id": str(request.booking_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/transition", response_model=BookingMutationResponse)
async def transition_booking(
    request: TransitionRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
    idempotency_key: Optional[str] = IdempotencyKey,
) -> JSONResponse:
    """
    Move a booking to a new status.

    Idempotent when an Idempotency-Key header is sent.
    """
    booking_service = BookingService(db)

    async def operation():
        outcome = await booking_service.transition(
            tenant_id,
            request.booking_id,
            request.new_status,
            checklist=request.checklist,
            actual_return_at=request.actual_return_at,
        )

        logger.info(
            "Booking transitioned successfully",
            extra={"booking_id": str(request.booking_id), "to_status": request.new_status.value}
        )

        return _convert_outcome_to_dict(outcome)

    try:
        return await handle_idempotent_operation(
            method="booking/transition",
            tenant_id=tenant_id,
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db,
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking transition",
            extra={"booking_id": str(request.booking_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/payment", response_model=BookingMutationResponse)
async def update_payment(
    request: PaymentUpdateRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
    idempotency_key: Optional[str] = IdempotencyKey,
) -> JSONResponse:
    """Record a payment on a booking; omitting the amount settles it in full."""
    booking_service = BookingService(db)

    async def operation():
        outcome = await booking_service.update_payment(
            tenant_id,
            request.booking_id,
            amount_paid=request.amount_paid,
            payment_method=request.payment_method,
            deferred_term_months=request.deferred_term_months,
        )

        logger.info(
            "Booking payment recorded",
            extra={
                "booking_id": str(request.booking_id),
                "amount_paid": outcome.booking.amount_paid,
                "paid_in_full": outcome.booking.paid_in_full,
            }
        )

        return _convert_outcome_to_dict(outcome)

    try:
        return await handle_idempotent_operation(
            method="booking/payment",
            tenant_id=tenant_id,
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db,
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in payment update",
            extra={"booking_id": str(request.booking_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e
