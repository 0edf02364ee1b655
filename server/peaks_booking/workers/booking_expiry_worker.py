"""Background worker that cancels unpaid bookings past their payment window."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import settings
from ..services.booking_service import BookingService, ExpirySweepResult
from ..services.capacity import ReservationController
from .base import BaseWorker

logger = logging.getLogger(__name__)


class BookingExpiryWorker(BaseWorker):
    """
    Periodically runs the booking expiry sweep.

    Each iteration uses a fresh session; the sweep itself tolerates failures
    on individual bookings.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        super().__init__(
            name="booking_expiry",
            interval_seconds=interval_seconds or settings.expiry_sweep_interval_seconds,
        )
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.expiry_sweep_batch_size
        self.last_result: Optional[ExpirySweepResult] = None

    async def process(self) -> None:
        controller = ReservationController.for_sessions(self.session_factory)
        async with self.session_factory() as db:
            result = await BookingService(db, controller).expire_stale_bookings(batch_size=self.batch_size)

        self.last_result = result
        if result.failed:
            logger.warning(
                "Expiry sweep left bookings unexpired",
                extra={"worker": self.name, "failed": result.failed, "expired": result.expired}
            )
