"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.config import settings
from .base import BaseWorker
from .ledger_sweep_worker import LedgerSweepWorker
from .marketplace_expiry_worker import MarketplaceExpiryWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """Starts and stops every background worker of the application together."""

    def __init__(self):
        self.workers: Dict[str, BaseWorker] = {
            "marketplace_expiry": MarketplaceExpiryWorker(
                interval_seconds=settings.marketplace_expiry_interval_seconds,
            ),
            "ledger_sweep": LedgerSweepWorker(
                interval_seconds=settings.ledger_sweep_interval_seconds,
                batch_size=settings.ledger_sweep_batch_size,
            ),
        }

    async def start_all(self) -> None:
        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception as e:
                logger.error("Failed to start worker", extra={"worker": name, "error": str(e)}, exc_info=True)

        logger.info("Workers started", extra={"workers": sorted(self.workers)})

    async def stop_all(self) -> None:
        """Stop all workers, logging rather than raising individual failures."""
        results = await asyncio.gather(
            *(worker.stop() for worker in self.workers.values()),
            return_exceptions=True,
        )

        for name, result in zip(self.workers.keys(), results):
            if isinstance(result, Exception):
                logger.error("Error stopping worker", extra={"worker": name, "error": str(result)})

        logger.info("Workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        return {name: worker.running for name, worker in self.workers.items()}


worker_manager = WorkerManager()
