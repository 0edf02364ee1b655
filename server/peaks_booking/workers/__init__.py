"""Background workers for the booking service."""

from .booking_expiry_worker import BookingExpiryWorker
from .manager import WorkerManager

__all__ = ["BookingExpiryWorker", "WorkerManager"]
