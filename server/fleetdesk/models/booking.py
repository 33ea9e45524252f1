"""Booking and deferred payment plan model definitions."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    """How the customer pays."""
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    QRIS = "QRIS"
    DEFERRED = "DEFERRED"


DEFERRED_TERMS = (1, 3, 6, 12)


class Booking(Base):
    """A car (and optionally a driver) committed to a customer for [start_at, end_at)."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    car_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("cars.id"), nullable=False, index=True)
    customer_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("customers.id"), nullable=False, index=True)
    driver_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("drivers.id"), nullable=True, index=True)

    # Half-open interval, end exclusive
    start_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    end_at: Mapped[datetime] = mapped_column(nullable=False, index=True)

    status: Mapped[BookingStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True
    )

    # Money, in whole currency units
    total_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_paid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentMethod.CASH
    )
    deferred_term_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    delivery_fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    overdue_fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    extra_fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    extra_fee_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Deposit metadata
    deposit_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    deposit_description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    deposit_value: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Pricing inputs kept so a later update can re-quote
    coverage_area_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    use_overnight: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Pricing outputs the ledger needs after completion
    rental_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    driver_daily_rate: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # {"odometer": int, "fuel_level": str, "notes": str, "photo_urls": [str]}
    pickup_checklist: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    return_checklist: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    actual_return_at: Mapped[datetime | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Bumped by every mutation; the reconciler only marks the revision it read as synced
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    ledger_synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)

    # Marketplace request this booking was converted from, and on which side
    marketplace_request_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    marketplace_side: Mapped[str | None] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("start_at < end_at", name="ck_booking_interval_valid"),
        CheckConstraint("total_price >= 0", name="ck_booking_total_non_negative"),
        CheckConstraint("amount_paid >= 0", name="ck_booking_paid_non_negative"),
        CheckConstraint("delivery_fee >= 0", name="ck_booking_delivery_non_negative"),
    )

    @property
    def paid_in_full(self) -> bool:
        return self.amount_paid >= self.total_price

    @property
    def pickup_odometer(self) -> int | None:
        if not self.pickup_checklist:
            return None
        return self.pickup_checklist.get("odometer")

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, car_id={self.car_id}, status={self.status}, "
            f"{self.start_at}..{self.end_at})>"
        )


class DeferredPaymentPlan(Base):
    """Installment schedule of a booking paid with the deferred method."""

    __tablename__ = "deferred_payment_plans"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    customer_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("customers.id"), nullable=False)

    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    term_months: Mapped[int] = mapped_column(Integer, nullable=False)
    monthly_installment: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("term_months IN (1, 3, 6, 12)", name="ck_deferred_term_valid"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeferredPaymentPlan(booking_id={self.booking_id}, "
            f"{self.term_months} x {self.monthly_installment})>"
        )
