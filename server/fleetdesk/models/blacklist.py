"""Cross-tenant blacklist registry."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class GlobalBlacklistEntry(Base):
    """
    A renter reported by any tenant. Shared across all tenants.

    ``national_id`` and ``phone`` are stored digits-only so lookups match
    regardless of how the number was typed.
    """

    __tablename__ = "global_blacklist"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    national_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    reported_by_tenant_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "national_id IS NOT NULL OR phone IS NOT NULL",
            name="ck_blacklist_has_identifier"
        ),
    )

    def __repr__(self) -> str:
        return f"<GlobalBlacklistEntry(id={self.id}, reason='{self.reason}')>"
