"""Ledger entry model definition."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, CheckConstraint, Date, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class EntryType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class LedgerCategory(str, Enum):
    """What a derived ledger entry accounts for. One entry per (booking, category)."""
    RENTAL_INCOME = "RENTAL_INCOME"
    DRIVER_SALARY = "DRIVER_SALARY"
    PARTNER_SHARE = "PARTNER_SHARE"
    DELIVERY_REIMBURSEMENT = "DELIVERY_REIMBURSEMENT"


class EntryStatus(str, Enum):
    PAID = "PAID"
    PENDING = "PENDING"


def make_reference(booking_id: UUID, category: LedgerCategory | str) -> str:
    """Stable reference tag of the entry a booking owes for a category."""
    category_value = category.value if isinstance(category, LedgerCategory) else category
    return f"[REF:{booking_id}:{category_value}]"


class LedgerEntry(Base):
    """
    Income or expense record derived from a booking.

    Rows are only written by the reconciler. The (tenant_id, reference)
    uniqueness constraint is what makes posting idempotent.
    """

    __tablename__ = "ledger_entries"

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
        index=True
    )

    entry_type: Mapped[EntryType] = mapped_column(String(20), nullable=False)
    category: Mapped[LedgerCategory] = mapped_column(String(40), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    reference: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[EntryStatus] = mapped_column(String(20), nullable=False, default=EntryStatus.PAID)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_ledger_amount_non_negative"),
        UniqueConstraint("tenant_id", "reference", name="uq_ledger_tenant_reference"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry(id={self.id}, reference='{self.reference}', "
            f"{self.entry_type} {self.amount})>"
        )
