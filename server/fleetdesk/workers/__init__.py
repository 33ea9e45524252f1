"""Background workers: marketplace request expiry and the ledger sweep."""

from .ledger_sweep_worker import LedgerSweepWorker
from .manager import WorkerManager, worker_manager
from .marketplace_expiry_worker import MarketplaceExpiryWorker

__all__ = ["LedgerSweepWorker", "MarketplaceExpiryWorker", "WorkerManager", "worker_manager"]
