"""Base worker class for periodic background jobs."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """
    Runs ``process`` every ``interval_seconds`` until stopped.

    A failing iteration is logged and the loop carries on at the next tick.
    """

    def __init__(self, name: str, interval_seconds: float = 60):
        self.name = name
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    @abstractmethod
    async def process(self) -> int:
        """Run one iteration and return how many items it handled."""

    async def start(self) -> None:
        """Start the worker loop as a background task."""
        if self._running:
            logger.warning("Worker already running", extra={"worker": self.name})
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"worker:{self.name}")
        logger.info(
            "Worker started",
            extra={"worker": self.name, "interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Worker stopped", extra={"worker": self.name})

    async def _run(self) -> None:
        while self._running:
            started = time.monotonic()
            try:
                handled = await self.process()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    "Worker iteration failed",
                    extra={"worker": self.name, "error": str(e)},
                    exc_info=True
                )
            else:
                logger.debug(
                    "Worker iteration completed",
                    extra={
                        "worker": self.name,
                        "handled": handled,
                        "duration_seconds": round(time.monotonic() - started, 3),
                    }
                )

            sleep_time = max(0.0, self.interval_seconds - (time.monotonic() - started))
            try:
                await asyncio.sleep(sleep_time)
            except asyncio.CancelledError:
                break
