"""Marketplace (rent-to-rent) schemas."""

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.marketplace import RequestStatus


class SendRequest(BaseModel):
    """Request schema for asking another tenant for one of its cars."""

    supplier_tenant_id: UUID
    car_id: UUID
    driver_id: Optional[UUID] = None
    start_at: datetime
    end_at: datetime
    quoted_price: int = Field(..., ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class RespondRequest(BaseModel):
    request_id: UUID
    decision: Literal["APPROVE", "REJECT"]


class ListRequestsRequest(BaseModel):
    status: Optional[RequestStatus] = None


class SearchCarsRequest(BaseModel):
    """Find other tenants' marketplace-ready cars that are free over an interval."""

    start_at: datetime
    end_at: datetime
    category: Optional[str] = None
    query: Optional[str] = Field(None, max_length=100, description="Matched against brand and model")


class MarketplaceRequest(BaseModel):
    """Marketplace request response schema."""

    id: str
    requester_tenant_id: str
    supplier_tenant_id: str
    car_id: str
    driver_id: Optional[str] = None
    start_at: datetime
    end_at: datetime
    quoted_price: int
    notes: Optional[str] = None
    status: RequestStatus
    expires_at: datetime
    resolved_at: Optional[datetime] = None
    supplier_booking_id: Optional[str] = None
    requester_booking_id: Optional[str] = None
    created_at: datetime


class MarketplaceRequestList(BaseModel):
    requests: List[MarketplaceRequest]


class MarketplaceCar(BaseModel):
    """A car offered on the marketplace."""

    id: str
    tenant_id: str
    company_name: str
    brand: str
    model: str
    category: Optional[str] = None
    price_per_day: int
    driver_daily_salary: Optional[int] = None


class SearchCarsResponse(BaseModel):
    cars: List[MarketplaceCar]
