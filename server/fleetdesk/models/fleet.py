"""Tenant-owned resources: cars, drivers and customers."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, CheckConstraint, ForeignKey, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class CarOwnerType(str, Enum):
    """Who owns a car in the tenant's fleet."""
    OWN = "OWN"
    PARTNER = "PARTNER"


class Car(Base):
    """A vehicle in a tenant's fleet."""

    __tablename__ = "cars"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    brand: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    plate: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)

    owner_type: Mapped[CarOwnerType] = mapped_column(
        String(20),
        nullable=False,
        default=CarOwnerType.OWN
    )
    partner_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    partner_share_pct: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    price_per_day: Mapped[int] = mapped_column(BigInteger, nullable=False)
    driver_daily_salary: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    current_odometer: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_marketplace_ready: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("price_per_day >= 0", name="ck_car_price_non_negative"),
        CheckConstraint("current_odometer >= 0", name="ck_car_odometer_non_negative"),
        CheckConstraint(
            "partner_share_pct >= 0 AND partner_share_pct <= 100",
            name="ck_car_partner_share_range"
        ),
    )

    def __repr__(self) -> str:
        return f"<Car(id={self.id}, plate='{self.plate}', owner_type={self.owner_type})>"


class Driver(Base):
    """A driver employed by a tenant."""

    __tablename__ = "drivers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    daily_rate: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Driver(id={self.id}, name='{self.name}')>"


class Customer(Base):
    """A renter registered by a tenant."""

    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    national_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Tenant-local flag, checked alongside the shared registry
    is_blacklisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blacklist_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, name='{self.name}')>"
