"""Ledger reconciler: derives income and expense entries from bookings."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import utcnow
from ..core.exceptions import NotFoundError, ProblemDetailsException, StorageError
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus, PaymentMethod
from ..models.fleet import Car, CarOwnerType
from ..models.ledger import EntryStatus, EntryType, LedgerCategory, LedgerEntry, make_reference
from ..models.marketplace import MarketplaceRequest
from ..schemas.ledger import LedgerSummary, ListLedgerRequest, ReconcileResult
from .pricing import round_up_to_thousand

logger = logging.getLogger(__name__)


def _period_bounds(year: Optional[int], month: Optional[int]) -> Optional[tuple[date, date]]:
    """Inclusive-exclusive date bounds for a year or a month; None means no filter."""
    if year is None and month is None:
        return None
    year = year or utcnow().year
    if month is None:
        return date(year, 1, 1), date(year + 1, 1, 1)
    if month == 12:
        return date(year, 12, 1), date(year + 1, 1, 1)
    return date(year, month, 1), date(year, month + 1, 1)


class LedgerReconciler:
    """
    Posts the ledger entries a booking owes, exactly once each.

    Every entry carries a reference tag built from the booking id and the
    category. An entry is looked up by that tag before it is written, and
    the (tenant_id, reference) unique constraint settles any race between
    two reconciles of the same booking.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_booking(self, tenant_id: UUID, booking_id: UUID) -> Booking:
        try:
            result = await self.db.execute(
                select(Booking)
                .where(Booking.id == booking_id, Booking.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            )
        except DBAPIError as e:
            raise StorageError("ledger.get_booking") from e

        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def _find_entry(self, tenant_id: UUID, reference: str) -> Optional[LedgerEntry]:
        result = await self.db.execute(
            select(LedgerEntry).where(
                LedgerEntry.tenant_id == tenant_id,
                LedgerEntry.reference == reference,
            )
        )
        return result.scalar_one_or_none()

    async def _partner_share(self, booking: Booking) -> int:
        """What the booking owes to whoever supplied the car."""
        if booking.marketplace_side == "REQUESTER" and booking.marketplace_request_id:
            request = await self.db.get(MarketplaceRequest, booking.marketplace_request_id)
            return request.quoted_price if request else 0

        car = await self.db.get(Car, booking.car_id)
        if (
            car is None
            or car.owner_type != CarOwnerType.PARTNER
            or car.tenant_id != booking.tenant_id
            or not car.partner_share_pct
        ):
            return 0
        return round_up_to_thousand(Decimal(booking.total_price) * car.partner_share_pct / 100)

    def _entry(
        self,
        booking: Booking,
        category: LedgerCategory,
        entry_type: EntryType,
        amount: int,
        label: str,
        status: EntryStatus = EntryStatus.PAID,
    ) -> LedgerEntry:
        reference = make_reference(booking.id, category)
        return LedgerEntry(
            tenant_id=booking.tenant_id,
            booking_id=booking.id,
            entry_type=entry_type,
            category=category,
            amount=amount,
            description=f"{label} {reference}",
            reference=reference,
            status=status,
            entry_date=utcnow().date(),
        )

    async def _due_entries(self, booking: Booking) -> list[LedgerEntry]:
        """Every entry the booking's current state calls for, posted or not."""
        entries = []

        income_due = booking.paid_in_full or booking.payment_method == PaymentMethod.DEFERRED
        if booking.status != BookingStatus.CANCELLED and income_due and booking.total_price > 0:
            entries.append(self._entry(
                booking,
                LedgerCategory.RENTAL_INCOME,
                EntryType.INCOME,
                booking.total_price,
                "Rental income",
                EntryStatus.PAID if booking.paid_in_full else EntryStatus.PENDING,
            ))

        if booking.status != BookingStatus.COMPLETED:
            return entries

        salary = booking.driver_daily_rate * booking.rental_days
        if booking.driver_id is not None and salary > 0:
            entries.append(self._entry(
                booking,
                LedgerCategory.DRIVER_SALARY,
                EntryType.EXPENSE,
                salary,
                f"Driver salary {booking.rental_days} x {booking.driver_daily_rate}",
            ))

        share = await self._partner_share(booking)
        if share > 0:
            entries.append(self._entry(
                booking,
                LedgerCategory.PARTNER_SHARE,
                EntryType.EXPENSE,
                share,
                "Partner revenue share",
            ))

        if booking.delivery_fee > 0:
            entries.append(self._entry(
                booking,
                LedgerCategory.DELIVERY_REIMBURSEMENT,
                EntryType.EXPENSE,
                booking.delivery_fee,
                "Delivery reimbursement",
            ))

        return entries

    async def _post(self, entry: LedgerEntry) -> bool:
        """Write one entry. Returns False when its reference was already posted."""
        category = LedgerCategory(entry.category).value
        reference = entry.reference

        if await self._find_entry(entry.tenant_id, reference) is not None:
            return False

        self.db.add(entry)
        try:
            await self.db.commit()
        except IntegrityError as e:
            # Another reconcile posted the same reference first
            await self.db.rollback()
            metrics_collector.record_ledger_duplicate()
            logger.info(
                "Ledger entry already posted (race condition)",
                extra={"reference": reference, "error": str(e)}
            )
            return False
        except DBAPIError as e:
            await self.db.rollback()
            raise StorageError("ledger.post") from e

        metrics_collector.record_ledger_posted(category)
        logger.info(
            "Ledger entry posted",
            extra={"reference": reference, "category": category, "amount": entry.amount}
        )
        return True

    async def _settle_pending_income(self, tenant_id: UUID, booking_id: UUID) -> bool:
        """Mark a PENDING income entry PAID. The caller checks the booking is paid in full."""
        result = await self.db.execute(
            update(LedgerEntry)
            .where(
                LedgerEntry.tenant_id == tenant_id,
                LedgerEntry.reference == make_reference(booking_id, LedgerCategory.RENTAL_INCOME),
                LedgerEntry.status == EntryStatus.PENDING,
            )
            .values(status=EntryStatus.PAID)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def reconcile(self, tenant_id: UUID, booking_id: UUID) -> ReconcileResult:
        """
        Post any ledger entries the booking owes and has not posted yet.

        Calling this any number of times leaves the ledger as after one call.

        Args:
            tenant_id: Tenant owning the booking
            booking_id: Booking to reconcile

        Returns:
            ReconcileResult listing what was posted by this call

        Raises:
            NotFoundError: If the booking does not exist in the tenant
            StorageError: If the database fails
        """
        booking = await self._get_booking(tenant_id, booking_id)
        seen_revision = booking.revision
        settle_income = booking.paid_in_full and booking.status != BookingStatus.CANCELLED

        try:
            due = await self._due_entries(booking)
        except DBAPIError as e:
            raise StorageError("ledger.due_entries") from e

        posted: list[LedgerCategory] = []
        already_posted: list[LedgerCategory] = []
        for entry in due:
            category = LedgerCategory(entry.category)
            try:
                written = await self._post(entry)
            except DBAPIError as e:
                await self.db.rollback()
                raise StorageError("ledger.post") from e
            (posted if written else already_posted).append(category)

        try:
            settled = settle_income and await self._settle_pending_income(tenant_id, booking_id)
        except DBAPIError as e:
            await self.db.rollback()
            raise StorageError("ledger.settle_income") from e

        # Only mark the revision that was read; a newer mutation stays unsynced
        try:
            result = await self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.revision == seen_revision)
                .values(ledger_synced=True, updated_at=Booking.updated_at)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except DBAPIError as e:
            await self.db.rollback()
            raise StorageError("ledger.mark_synced") from e

        synced = result.rowcount == 1
        logger.info(
            "Booking reconciled",
            extra={
                "booking_id": str(booking_id),
                "posted": [c.value for c in posted],
                "already_posted": [c.value for c in already_posted],
                "settled_income": settled,
                "synced": synced,
            }
        )
        return ReconcileResult(
            booking_id=str(booking_id),
            posted=posted,
            already_posted=already_posted,
            synced=synced,
        )

    async def reconcile_quietly(self, tenant_id: UUID, booking_id: UUID) -> ReconcileResult:
        """
        Reconcile after a committed mutation.

        Failures are logged and reported in the result instead of raised,
        so they never undo the mutation; the sweep retries later.
        """
        try:
            return await self.reconcile(tenant_id, booking_id)
        except ProblemDetailsException as e:
            logger.error(
                "Ledger reconciliation failed",
                extra={"booking_id": str(booking_id), "error": str(e)}
            )
            return ReconcileResult(booking_id=str(booking_id), synced=False, error=str(e))

    async def sweep(self, batch_size: int = 100) -> int:
        """
        Reconcile bookings whose ledger is not known to be complete.

        Returns:
            Number of bookings brought in sync
        """
        result = await self.db.execute(
            select(Booking.tenant_id, Booking.id)
            .where(Booking.ledger_synced.is_(False))
            .order_by(Booking.updated_at)
            .limit(batch_size)
        )
        pending = result.all()
        metrics_collector.set_unsynced_bookings(len(pending))

        synced = 0
        for tenant_id, booking_id in pending:
            outcome = await self.reconcile_quietly(tenant_id, booking_id)
            if outcome.synced:
                synced += 1

        if pending:
            logger.info(
                "Ledger sweep finished",
                extra={"candidates": len(pending), "synced": synced}
            )
        return synced

    async def list_entries(self, tenant_id: UUID, request: ListLedgerRequest) -> list[LedgerEntry]:
        """List the tenant's ledger entries, newest first."""
        stmt = select(LedgerEntry).where(LedgerEntry.tenant_id == tenant_id)

        bounds = _period_bounds(request.year, request.month)
        if bounds:
            stmt = stmt.where(LedgerEntry.entry_date >= bounds[0], LedgerEntry.entry_date < bounds[1])
        if request.booking_id:
            stmt = stmt.where(LedgerEntry.booking_id == request.booking_id)

        stmt = stmt.order_by(LedgerEntry.entry_date.desc(), LedgerEntry.created_at.desc()).limit(request.limit)

        try:
            result = await self.db.execute(stmt)
        except DBAPIError as e:
            raise StorageError("ledger.list") from e
        return list(result.scalars().all())

    async def summary(
        self,
        tenant_id: UUID,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> LedgerSummary:
        """Total income, total expense and balance of the tenant, optionally for one period."""
        income = func.coalesce(func.sum(case(
            (LedgerEntry.entry_type == EntryType.INCOME, LedgerEntry.amount), else_=0
        )), 0)
        expense = func.coalesce(func.sum(case(
            (LedgerEntry.entry_type == EntryType.EXPENSE, LedgerEntry.amount), else_=0
        )), 0)

        stmt = select(income, expense).where(LedgerEntry.tenant_id == tenant_id)
        bounds = _period_bounds(year, month)
        if bounds:
            stmt = stmt.where(LedgerEntry.entry_date >= bounds[0], LedgerEntry.entry_date < bounds[1])

        try:
            result = await self.db.execute(stmt)
        except DBAPIError as e:
            raise StorageError("ledger.summary") from e

        total_income, total_expense = result.one()
        return LedgerSummary(
            total_income=int(total_income),
            total_expense=int(total_expense),
            balance=int(total_income) - int(total_expense),
        )
