"""Pricing router."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentTenant, DatabaseSession
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.pricing import PriceBreakdown, QuoteRequest
from ..services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/pricing", tags=["pricing"], responses=PROBLEM_RESPONSES)


@router.post("/quote", response_model=PriceBreakdown)
async def quote_price(
    request: QuoteRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """
    Quote a rental with the tenant's current pricing settings.

    Returns the total plus agent and customer prices rounded up to 1,000.
    """
    booking_service = BookingService(db)

    try:
        breakdown = await booking_service.quote(tenant_id, request)

        logger.info(
            "Price quoted",
            extra={
                "car_id": str(request.car_id),
                "rental_days": breakdown.rental_days,
                "total": breakdown.total,
            }
        )

        return JSONResponse(status_code=200, content=breakdown.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in price quote",
            extra={"car_id": str(request.car_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e
