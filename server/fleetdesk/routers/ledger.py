"""Ledger router: reconcile bookings and read the tenant's books."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentTenant, DatabaseSession
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.ledger import (
    LedgerEntry,
    LedgerSummary,
    ListLedgerRequest,
    ListLedgerResponse,
    ReconcileRequest,
    ReconcileResult,
    SummaryRequest,
)
from ..services.ledger_service import LedgerReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ledger", tags=["ledger"], responses=PROBLEM_RESPONSES)


def _convert_entry_to_schema(entry_model) -> LedgerEntry:
    """Convert ledger entry model to schema."""
    return LedgerEntry(
        id=str(entry_model.id),
        booking_id=str(entry_model.booking_id),
        entry_type=entry_model.entry_type,
        category=entry_model.category,
        amount=entry_model.amount,
        description=entry_model.description,
        reference=entry_model.reference,
        status=entry_model.status,
        entry_date=entry_model.entry_date,
        created_at=entry_model.created_at,
    )


@router.post("/reconcile", response_model=ReconcileResult)
async def reconcile_booking(
    request: ReconcileRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """
    Post whatever ledger entries the booking is due and mark it synced.

    Safe to call any number of times; entries already posted are left alone.
    """
    reconciler = LedgerReconciler(db)

    try:
        result = await reconciler.reconcile(tenant_id, request.booking_id)
        return JSONResponse(status_code=200, content=result.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in ledger reconcile",
            extra={"booking_id": str(request.booking_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/list", response_model=ListLedgerResponse)
async def list_entries(
    request: ListLedgerRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """List the tenant's ledger entries, optionally for one month or one booking."""
    reconciler = LedgerReconciler(db)

    try:
        entries = await reconciler.list_entries(tenant_id, request)
        response_data = ListLedgerResponse(
            entries=[_convert_entry_to_schema(entry) for entry in entries]
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error listing ledger entries",
            extra={"error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/summary", response_model=LedgerSummary)
async def ledger_summary(
    request: SummaryRequest,
    tenant_id: UUID = CurrentTenant,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Total income, total expense and balance."""
    reconciler = LedgerReconciler(db)

    try:
        summary = await reconciler.summary(tenant_id, year=request.year, month=request.month)
        return JSONResponse(status_code=200, content=summary.model_dump())

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in ledger summary",
            extra={"error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e
