"""Ledger schemas."""

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.ledger import EntryStatus, EntryType, LedgerCategory


class ReconcileResult(BaseModel):
    """Outcome of reconciling one booking against the ledger."""

    booking_id: str
    posted: List[LedgerCategory] = Field(default_factory=list, description="Entries written by this call")
    already_posted: List[LedgerCategory] = Field(default_factory=list)
    synced: bool = Field(..., description="False when posting failed and the sweep will retry")
    error: Optional[str] = None


class ReconcileRequest(BaseModel):
    booking_id: UUID


class ListLedgerRequest(BaseModel):
    """Request schema for listing ledger entries of the acting tenant."""

    year: Optional[int] = Field(None, ge=2000, le=2100)
    month: Optional[int] = Field(None, ge=1, le=12)
    booking_id: Optional[UUID] = None
    limit: int = Field(100, ge=1, le=1000)


class LedgerEntry(BaseModel):
    """Ledger entry response schema."""

    id: str
    booking_id: str
    entry_type: EntryType
    category: LedgerCategory
    amount: int
    description: str
    reference: str
    status: EntryStatus
    entry_date: date
    created_at: datetime


class ListLedgerResponse(BaseModel):
    entries: List[LedgerEntry]


class SummaryRequest(BaseModel):
    year: Optional[int] = Field(None, ge=2000, le=2100)
    month: Optional[int] = Field(None, ge=1, le=12)


class LedgerSummary(BaseModel):
    total_income: int
    total_expense: int
    balance: int
