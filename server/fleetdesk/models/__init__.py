"""Models module exporting all database models."""

from .blacklist import GlobalBlacklistEntry
from .booking import DEFERRED_TERMS, Booking, BookingStatus, DeferredPaymentPlan, PaymentMethod
from .fleet import Car, CarOwnerType, Customer, Driver
from .idempotency import IdempotencyRecord
from .ledger import EntryStatus, EntryType, LedgerCategory, LedgerEntry, make_reference
from .marketplace import MarketplaceRequest, RequestStatus
from .tenant import Company, HighSeason, TenantSettings

__all__ = [
    # Tenancy
    "Company",
    "TenantSettings",
    "HighSeason",

    # Fleet
    "Car",
    "CarOwnerType",
    "Driver",
    "Customer",

    # Bookings
    "Booking",
    "BookingStatus",
    "PaymentMethod",
    "DeferredPaymentPlan",
    "DEFERRED_TERMS",

    # Ledger
    "LedgerEntry",
    "LedgerCategory",
    "EntryType",
    "EntryStatus",
    "make_reference",

    # Marketplace
    "MarketplaceRequest",
    "RequestStatus",

    # Registry
    "GlobalBlacklistEntry",

    # Idempotency
    "IdempotencyRecord",
]
