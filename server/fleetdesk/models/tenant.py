"""Tenant (company) and per-tenant pricing settings models."""

from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, CheckConstraint, Date, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class Company(Base):
    """A rental company account, the isolation boundary for all fleet data."""

    __tablename__ = "companies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("length(name) > 0", name="ck_company_name_not_empty"),
    )

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name='{self.name}')>"


class TenantSettings(Base):
    """
    Pricing configuration of one tenant.

    The ``data`` document holds driver tiers, overnight price, markups and
    coverage areas; it is validated into a frozen snapshot on every read.
    """

    __tablename__ = "tenant_settings"

    tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        primary_key=True
    )
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )


class HighSeason(Base):
    """A seasonal surcharge rule, applied per calendar day inside [start_date, end_date]."""

    __tablename__ = "high_seasons"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    price_increase: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_high_season_dates"),
        CheckConstraint("price_increase >= 0", name="ck_high_season_increase_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<HighSeason(id={self.id}, name='{self.name}', "
            f"{self.start_date}..{self.end_date}, +{self.price_increase})>"
        )
