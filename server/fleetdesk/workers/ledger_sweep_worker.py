"""Background worker that retries ledger posting for unsynced bookings."""

import logging

from ..core.database import async_session_factory
from ..services.ledger_service import LedgerReconciler
from .base import BaseWorker

logger = logging.getLogger(__name__)


class LedgerSweepWorker(BaseWorker):
    """
    Reconciles bookings whose ledger posting failed or was interrupted.

    Bookings carry ``ledger_synced = False`` from the moment they change until
    a reconcile completes, so the sweep picks up anything a crash or a
    storage error left behind.
    """

    def __init__(self, interval_seconds: float = 300, batch_size: int = 100, session_factory=None):
        super().__init__(name="LedgerSweep", interval_seconds=interval_seconds)
        self.batch_size = batch_size
        self.session_factory = session_factory or async_session_factory

    async def process(self) -> int:
        async with self.session_factory() as db:
            swept = await LedgerReconciler(db).sweep(self.batch_size)

        if swept:
            logger.info("Reconciled unsynced bookings", extra={"count": swept})
        return swept
