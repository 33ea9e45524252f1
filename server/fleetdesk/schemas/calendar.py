"""Resource calendar schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AvailabilityRequest(BaseModel):
    """Request schema for checking one car (and driver) over an interval."""

    car_id: UUID
    driver_id: Optional[UUID] = None
    start_at: datetime
    end_at: datetime
    exclude_booking_id: Optional[UUID] = Field(None, description="Booking being edited, ignored by the check")


class AvailabilityResponse(BaseModel):
    available: bool


class UnavailableRequest(BaseModel):
    """Request schema for listing every busy car and driver over an interval."""

    start_at: datetime
    end_at: datetime
    exclude_booking_id: Optional[UUID] = None


class UnavailableResponse(BaseModel):
    car_ids: List[str] = Field(default_factory=list)
    driver_ids: List[str] = Field(default_factory=list)
