"""Lookups against the shared blacklist registry."""

import logging
import re
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import StorageError
from ..models.blacklist import GlobalBlacklistEntry
from ..models.fleet import Customer

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_identifier(value: Optional[str]) -> Optional[str]:
    """Strip everything but digits; empty results become None."""
    if not value:
        return None
    digits = _NON_DIGITS.sub("", value)
    return digits or None


class BlacklistService:
    """Service for blacklist checks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check(self, national_id: Optional[str], phone: Optional[str]) -> tuple[bool, Optional[str]]:
        """
        Look a renter up in the shared registry by national ID or phone.

        Returns:
            (hit, reason)

        Raises:
            StorageError: If the lookup fails
        """
        conditions = []
        normalized_id = normalize_identifier(national_id)
        normalized_phone = normalize_identifier(phone)
        if normalized_id:
            conditions.append(GlobalBlacklistEntry.national_id == normalized_id)
        if normalized_phone:
            conditions.append(GlobalBlacklistEntry.phone == normalized_phone)
        if not conditions:
            return False, None

        try:
            result = await self.db.execute(
                select(GlobalBlacklistEntry).where(or_(*conditions)).limit(1)
            )
        except DBAPIError as e:
            raise StorageError("blacklist.check") from e

        entry = result.scalar_one_or_none()
        if entry is None:
            return False, None
        return True, entry.reason

    async def check_customer(self, customer: Customer) -> tuple[bool, Optional[str]]:
        """Registry lookup plus the customer's own tenant-local flag."""
        if customer.is_blacklisted:
            return True, customer.blacklist_reason or "Blacklisted by this company"

        hit, reason = await self.check(customer.national_id, customer.phone)
        if hit:
            logger.warning(
                "Customer found in blacklist registry",
                extra={"customer_id": str(customer.id), "reason": reason}
            )
        return hit, reason
