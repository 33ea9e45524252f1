"""Cross-tenant rent-to-rent request model."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class RequestStatus(str, Enum):
    """Marketplace request status. Everything but PENDING is terminal."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class MarketplaceRequest(Base):
    """A request by one tenant to rent a car (and driver) from another tenant's fleet."""

    __tablename__ = "marketplace_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    requester_tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    supplier_tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    car_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("cars.id"), nullable=False)
    driver_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("drivers.id"), nullable=True)

    start_at: Mapped[datetime] = mapped_column(nullable=False)
    end_at: Mapped[datetime] = mapped_column(nullable=False)
    quoted_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[RequestStatus] = mapped_column(
        String(20),
        nullable=False,
        default=RequestStatus.PENDING,
        index=True
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Claimed once each when the approved request is turned into bookings
    supplier_booking_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    requester_booking_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("requester_tenant_id <> supplier_tenant_id", name="ck_marketplace_no_self_dealing"),
        CheckConstraint("start_at < end_at", name="ck_marketplace_interval_valid"),
        CheckConstraint("quoted_price >= 0", name="ck_marketplace_price_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<MarketplaceRequest(id={self.id}, requester={self.requester_tenant_id}, "
            f"supplier={self.supplier_tenant_id}, status={self.status})>"
        )
