"""Booking-related Pydantic schemas."""

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus, PaymentMethod
from .ledger import ReconcileResult

MarketplaceSide = Literal["SUPPLIER", "REQUESTER"]


class Checklist(BaseModel):
    """Vehicle condition recorded at pickup or return."""

    odometer: int = Field(..., ge=0, description="Odometer reading in km")
    fuel_level: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None
    photo_urls: List[str] = Field(default_factory=list, description="Opaque object storage URLs")


class BookingDraft(BaseModel):
    """
    Request schema for creating a booking.

    Setting ``marketplace_request_id`` and ``marketplace_side`` converts an
    approved marketplace request; on the supplier side ``customer_id`` may be
    omitted and the requesting company is used as the customer.
    """

    car_id: UUID
    customer_id: Optional[UUID] = None
    driver_id: Optional[UUID] = None
    start_at: datetime
    end_at: datetime

    initial_status: Literal["PENDING", "CONFIRMED"] = "PENDING"
    payment_method: PaymentMethod = PaymentMethod.CASH
    amount_paid: int = Field(0, ge=0)
    deferred_term_months: Optional[int] = None

    delivery_fee: int = Field(0, ge=0)
    overdue_fee: int = Field(0, ge=0)
    extra_fee: int = Field(0, ge=0)
    extra_fee_reason: Optional[str] = Field(None, max_length=500)

    deposit_type: Optional[str] = Field(None, max_length=50)
    deposit_description: Optional[str] = Field(None, max_length=500)
    deposit_value: Optional[int] = Field(None, ge=0)

    coverage_area_id: Optional[str] = None
    distance_km: Optional[float] = Field(None, ge=0)
    use_overnight: bool = False
    total_price: Optional[int] = Field(None, ge=0, description="Explicit price, skips the pricing engine")

    notes: Optional[str] = None

    marketplace_request_id: Optional[UUID] = None
    marketplace_side: Optional[MarketplaceSide] = None


class BookingUpdate(BaseModel):
    """
    Partial update. Only fields present in the payload are applied.

    Send ``driver_id: null`` to remove the driver. Status never changes here.
    """

    car_id: Optional[UUID] = None
    driver_id: Optional[UUID] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

    delivery_fee: Optional[int] = Field(None, ge=0)
    overdue_fee: Optional[int] = Field(None, ge=0)
    extra_fee: Optional[int] = Field(None, ge=0)
    extra_fee_reason: Optional[str] = Field(None, max_length=500)

    deposit_type: Optional[str] = Field(None, max_length=50)
    deposit_description: Optional[str] = Field(None, max_length=500)
    deposit_value: Optional[int] = Field(None, ge=0)

    coverage_area_id: Optional[str] = None
    distance_km: Optional[float] = Field(None, ge=0)
    use_overnight: Optional[bool] = None
    total_price: Optional[int] = Field(None, ge=0)

    pickup_checklist: Optional[Checklist] = None
    return_checklist: Optional[Checklist] = None
    actual_return_at: Optional[datetime] = None
    notes: Optional[str] = None


class GetBookingRequest(BaseModel):
    booking_id: UUID


class UpdateBookingRequest(BaseModel):
    booking_id: UUID
    changes: BookingUpdate


class TransitionRequest(BaseModel):
    """Request schema for moving a booking to a new status."""

    booking_id: UUID
    new_status: BookingStatus
    checklist: Optional[Checklist] = Field(
        None, description="Pickup checklist for ACTIVE, return checklist for COMPLETED"
    )
    actual_return_at: Optional[datetime] = None


class PaymentUpdateRequest(BaseModel):
    """Request schema for recording a payment. Omit ``amount_paid`` to settle in full."""

    booking_id: UUID
    amount_paid: Optional[int] = Field(None, ge=0)
    payment_method: Optional[PaymentMethod] = None
    deferred_term_months: Optional[int] = None


class Booking(BaseModel):
    """Booking response schema."""

    id: str
    tenant_id: str
    car_id: str
    customer_id: str
    driver_id: Optional[str] = None
    start_at: datetime
    end_at: datetime
    status: BookingStatus
    total_price: int
    amount_paid: int
    paid_in_full: bool
    payment_method: PaymentMethod
    deferred_term_months: Optional[int] = None
    delivery_fee: int
    overdue_fee: int
    extra_fee: int
    extra_fee_reason: Optional[str] = None
    deposit_type: Optional[str] = None
    deposit_description: Optional[str] = None
    deposit_value: Optional[int] = None
    coverage_area_id: Optional[str] = None
    distance_km: Optional[float] = None
    use_overnight: bool
    rental_days: int
    driver_daily_rate: int
    pickup_checklist: Optional[Checklist] = None
    return_checklist: Optional[Checklist] = None
    actual_return_at: Optional[datetime] = None
    notes: Optional[str] = None
    ledger_synced: bool
    marketplace_request_id: Optional[str] = None
    marketplace_side: Optional[MarketplaceSide] = None
    created_at: datetime
    updated_at: datetime


class BookingMutationResponse(BaseModel):
    """A mutated booking plus the outcome of the ledger reconcile that followed it."""

    booking: Booking
    ledger: ReconcileResult
