"""Resource calendar router."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentTenant, DatabaseSession
from ..core.exceptions import ProblemDetailsException
from ..schemas.calendar import (
    AvailabilityRequest,
    AvailabilityResponse,
    UnavailableRequest,
    UnavailableResponse,
)
from ..schemas.common import PROBLEM_RESPONSES
from ..services.calendar_service import ResourceCalendar

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/calendar", tags=["calendar"], responses=PROBLEM_RESPONSES)


@router.post("/check", response_model=AvailabilityResponse)
async def check_availability(
    request: AvailabilityRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Check whether a car, and optionally a driver, is free over an interval."""
    calendar = ResourceCalendar(db)

    try:
        available = await calendar.is_available(
            tenant_id,
            request.car_id,
            request.start_at,
            request.end_at,
            driver_id=request.driver_id,
            exclude_booking_id=request.exclude_booking_id,
        )

        logger.debug(
            "Availability checked",
            extra={"car_id": str(request.car_id), "available": available}
        )

        return JSONResponse(
            status_code=200,
            content=AvailabilityResponse(available=available).model_dump()
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in availability check",
            extra={"car_id": str(request.car_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/unavailable", response_model=UnavailableResponse)
async def list_unavailable(
    request: UnavailableRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """List every car and driver of the tenant already committed over an interval."""
    calendar = ResourceCalendar(db)

    try:
        car_ids, driver_ids = await calendar.list_unavailable(
            tenant_id,
            request.start_at,
            request.end_at,
            exclude_booking_id=request.exclude_booking_id,
        )

        response_data = UnavailableResponse(
            car_ids=sorted(str(car_id) for car_id in car_ids),
            driver_ids=sorted(str(driver_id) for driver_id in driver_ids),
        )

        return JSONResponse(status_code=200, content=response_data.model_dump())

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error listing unavailable resources",
            extra={"error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e
