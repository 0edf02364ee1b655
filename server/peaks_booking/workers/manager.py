"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .base import BaseWorker
from .booking_expiry_worker import BookingExpiryWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Coordinates starting and stopping of all background workers.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.workers: Dict[str, BaseWorker] = {
            "booking_expiry": BookingExpiryWorker(session_factory),
        }

    async def start_all(self) -> None:
        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception:
                logger.error("Failed to start worker", exc_info=True, extra={"worker": name})

    async def stop_all(self) -> None:
        """Stop all workers; one failing to stop does not block the others."""
        names = list(self.workers)
        results = await asyncio.gather(
            *(self.workers[name].stop() for name in names),
            return_exceptions=True,
        )
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error("Error stopping worker", extra={"worker": name, "error": repr(result)})

    def get_worker(self, name: str) -> BaseWorker:
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        return {name: worker.is_running for name, worker in self.workers.items()}
