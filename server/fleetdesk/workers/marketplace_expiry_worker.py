"""Background worker for expiring stale marketplace requests."""

from ..core.database import async_session_factory
from ..services.marketplace_service import MarketplaceBroker
from .base import BaseWorker


class MarketplaceExpiryWorker(BaseWorker):
    """
    Moves PENDING marketplace requests past their expiry to EXPIRED.

    A request is still expired on access when the supplier responds late;
    this worker keeps the incoming and outgoing lists accurate between
    responses.
    """

    def __init__(self, interval_seconds: float = 60, session_factory=None):
        super().__init__(name="MarketplaceExpiry", interval_seconds=interval_seconds)
        self.session_factory = session_factory or async_session_factory

    async def process(self) -> int:
        async with self.session_factory() as db:
            return await MarketplaceBroker(db).expire_stale_requests()
