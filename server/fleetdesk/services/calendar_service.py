"""Resource calendar: which cars and drivers are committed over an interval."""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import as_naive_utc, is_postgresql
from ..core.exceptions import StorageError, ValidationError
from ..models.booking import Booking, BookingStatus

logger = logging.getLogger(__name__)

ResourceKey = tuple[str, str, str]


def resource_keys(tenant_id: UUID, car_id: UUID, driver_id: Optional[UUID] = None) -> list[ResourceKey]:
    """Lock keys for a (tenant, car[, driver]) reservation."""
    keys = [(str(tenant_id), "car", str(car_id))]
    if driver_id is not None:
        keys.append((str(tenant_id), "driver", str(driver_id)))
    return keys


class ResourceLockRegistry:
    """
    In-process exclusive locks keyed by (tenant, kind, resource id).

    Locks are always acquired in sorted key order so two reservations
    touching the same car and driver cannot deadlock. Each event loop gets
    its own set of locks. A lock is dropped once nobody holds or waits on it.
    """

    def __init__(self):
        self._locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[ResourceKey, list]]" = (
            weakref.WeakKeyDictionary()
        )

    def _checkout(self, key: ResourceKey) -> asyncio.Lock:
        """Return the lock for ``key``, counting the caller as a user until ``_checkin``."""
        loop_locks = self._locks.setdefault(asyncio.get_running_loop(), {})
        entry = loop_locks.get(key)
        if entry is None:
            entry = loop_locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        return entry[0]

    def _checkin(self, key: ResourceKey) -> None:
        loop_locks = self._locks.get(asyncio.get_running_loop(), {})
        entry = loop_locks.get(key)
        if entry is None:
            return
        entry[1] -= 1
        if entry[1] <= 0:
            del loop_locks[key]

    def size(self) -> int:
        """Number of live locks on the running loop."""
        return len(self._locks.get(asyncio.get_running_loop(), {}))

    @asynccontextmanager
    async def hold(self, keys: Iterable[ResourceKey]) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        checked_out: list[ResourceKey] = []
        acquired: list[asyncio.Lock] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)


resource_locks = ResourceLockRegistry()


def _overlaps(start_at: datetime, end_at: datetime):
    # Half-open intervals: [s, e) and [start, end) overlap iff start < e and end > s
    return and_(
        Booking.start_at < end_at,
        Booking.end_at > start_at,
        Booking.status != BookingStatus.CANCELLED,
    )


class ResourceCalendar:
    """Answers availability questions for one tenant's cars and drivers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_resources(self, keys: Iterable[ResourceKey]) -> None:
        """
        Take transaction-scoped advisory locks for the given keys.

        Only PostgreSQL has advisory locks; other backends rely on the
        in-process registry alone.
        """
        if not is_postgresql(self.db):
            return
        ordered = [":".join(key) for key in sorted(set(keys))]
        for key in ordered:
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": key}
            )
        logger.debug("Acquired advisory locks", extra={"lock_keys": ordered})

    async def find_conflict(
        self,
        tenant_id: UUID,
        car_id: UUID,
        start_at: datetime,
        end_at: datetime,
        driver_id: Optional[UUID] = None,
        exclude_booking_id: Optional[UUID] = None,
    ) -> Optional[Booking]:
        """
        Return one non-cancelled booking that overlaps the interval on the car
        or, when given, the driver.

        Raises:
            ValidationError: If start_at is not before end_at
            StorageError: If the query fails
        """
        start_at, end_at = as_naive_utc(start_at), as_naive_utc(end_at)
        if start_at >= end_at:
            raise ValidationError("start_at must be before end_at")

        resource_match = Booking.car_id == car_id
        if driver_id is not None:
            resource_match = or_(resource_match, Booking.driver_id == driver_id)

        stmt = select(Booking).where(
            Booking.tenant_id == tenant_id,
            resource_match,
            _overlaps(start_at, end_at),
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)

        try:
            result = await self.db.execute(stmt.limit(1))
        except DBAPIError as e:
            logger.error(
                "Availability query failed",
                extra={"tenant_id": str(tenant_id), "car_id": str(car_id), "error": str(e)}
            )
            raise StorageError("calendar.find_conflict") from e

        return result.scalar_one_or_none()

    async def is_available(
        self,
        tenant_id: UUID,
        car_id: UUID,
        start_at: datetime,
        end_at: datetime,
        driver_id: Optional[UUID] = None,
        exclude_booking_id: Optional[UUID] = None,
    ) -> bool:
        """True when neither the car nor the requested driver is committed over [start_at, end_at)."""
        conflict = await self.find_conflict(
            tenant_id, car_id, start_at, end_at,
            driver_id=driver_id,
            exclude_booking_id=exclude_booking_id,
        )
        return conflict is None

    async def list_unavailable(
        self,
        tenant_id: UUID,
        start_at: datetime,
        end_at: datetime,
        exclude_booking_id: Optional[UUID] = None,
    ) -> tuple[set[UUID], set[UUID]]:
        """
        Every car and driver of the tenant committed somewhere in [start_at, end_at).

        Returns:
            (car_ids, driver_ids)
        """
        start_at, end_at = as_naive_utc(start_at), as_naive_utc(end_at)
        if start_at >= end_at:
            raise ValidationError("start_at must be before end_at")

        stmt = select(Booking.car_id, Booking.driver_id).where(
            Booking.tenant_id == tenant_id,
            _overlaps(start_at, end_at),
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)

        try:
            result = await self.db.execute(stmt)
        except DBAPIError as e:
            raise StorageError("calendar.list_unavailable") from e

        car_ids: set[UUID] = set()
        driver_ids: set[UUID] = set()
        for car_id, driver_id in result.all():
            car_ids.add(car_id)
            if driver_id is not None:
                driver_ids.add(driver_id)
        return car_ids, driver_ids
