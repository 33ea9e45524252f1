"""Service layer package."""

from .blacklist_service import BlacklistService
from .booking_service import BookingOutcome, BookingService
from .calendar_service import ResourceCalendar, resource_locks
from .idempotency_service import IdempotencyService
from .ledger_service import LedgerReconciler
from .marketplace_service import MarketplaceBroker
from .settings_service import SettingsService

__all__ = [
    "BlacklistService",
    "BookingOutcome",
    "BookingService",
    "IdempotencyService",
    "LedgerReconciler",
    "MarketplaceBroker",
    "ResourceCalendar",
    "SettingsService",
    "resource_locks",
]
