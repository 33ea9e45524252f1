"""Marketplace router for cross-tenant car requests."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentTenant, DatabaseSession, IdempotencyKey
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.marketplace import (
    ListRequestsRequest,
    MarketplaceRequest,
    MarketplaceRequestList,
    RespondRequest,
    SearchCarsRequest,
    SearchCarsResponse,
    SendRequest,
)
from ..services.marketplace_service import MarketplaceBroker
from .common import handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/marketplace", tags=["marketplace"], responses=PROBLEM_RESPONSES)


def _optional_str(value) -> Optional[str]:
    return str(value) if value is not None else None


def _convert_request_to_schema(request_model) -> MarketplaceRequest:
    """Convert marketplace request model to schema."""
    return MarketplaceRequest(
        id=str(request_model.id),
        requester_tenant_id=str(request_model.requester_tenant_id),
        supplier_tenant_id=str(request_model.supplier_tenant_id),
        car_id=str(request_model.car_id),
        driver_id=_optional_str(request_model.driver_id),
        start_at=request_model.start_at,
        end_at=request_model.end_at,
        quoted_price=request_model.quoted_price,
        notes=request_model.notes,
        status=request_model.status,
        expires_at=request_model.expires_at,
        resolved_at=request_model.resolved_at,
        supplier_booking_id=_optional_str(request_model.supplier_booking_id),
        requester_booking_id=_optional_str(request_model.requester_booking_id),
        created_at=request_model.created_at,
    )


@router.post("/request", response_model=MarketplaceRequest)
async def send_request(
    request: SendRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
    idempotency_key: Optional[str] = IdempotencyKey,
) -> JSONResponse:
    """
    Ask another tenant for one of its cars over an interval.

    Idempotent when an Idempotency-Key header is sent.
    """
    broker = MarketplaceBroker(db)

    async def operation():
        marketplace_request = await broker.send_request(tenant_id, request)

        logger.info(
            "Marketplace request sent",
            extra={
                "request_id": str(marketplace_request.id),
                "supplier_tenant_id": str(request.supplier_tenant_id),
                "car_id": str(request.car_id),
            }
        )

        return _convert_request_to_schema(marketplace_request).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="marketplace/request",
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
            "Unexpected error sending marketplace request",
            extra={"car_id": str(request.car_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/respond", response_model=MarketplaceRequest)
async def respond_to_request(
    request: RespondRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
    idempotency_key: Optional[str] = IdempotencyKey,
) -> JSONResponse:
    """
    Approve or reject an incoming request as its supplier.

    Idempotent when an Idempotency-Key header is sent.
    """
    broker = MarketplaceBroker(db)

    async def operation():
        marketplace_request = await broker.respond_to_request(request.request_id, request.decision, tenant_id)

        logger.info(
            "Marketplace request resolved",
            extra={"request_id": str(request.request_id), "decision": request.decision}
        )

        return _convert_request_to_schema(marketplace_request).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="marketplace/respond",
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
            "Unexpected error resolving marketplace request",
            extra={"request_id": str(request.request_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/incoming", response_model=MarketplaceRequestList)
async def list_incoming(
    request: ListRequestsRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Requests other tenants sent to this tenant."""
    broker = MarketplaceBroker(db)

    try:
        requests = await broker.list_incoming(tenant_id, request.status)
        response_data = MarketplaceRequestList(
            requests=[_convert_request_to_schema(r) for r in requests]
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error("Unexpected error listing incoming requests", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/outgoing", response_model=MarketplaceRequestList)
async def list_outgoing(
    request: ListRequestsRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Requests this tenant sent to others."""
    broker = MarketplaceBroker(db)

    try:
        requests = await broker.list_outgoing(tenant_id, request.status)
        response_data = MarketplaceRequestList(
            requests=[_convert_request_to_schema(r) for r in requests]
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error("Unexpected error listing outgoing requests", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/search", response_model=SearchCarsResponse)
async def search_cars(
    request: SearchCarsRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Search other tenants' marketplace-ready cars that are free over an interval."""
    broker = MarketplaceBroker(db)

    try:
        cars = await broker.search_cars(tenant_id, request)
        return JSONResponse(
            status_code=200,
            content=SearchCarsResponse(cars=cars).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error("Unexpected error in marketplace search", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error") from e
