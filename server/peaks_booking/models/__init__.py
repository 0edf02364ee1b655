"""Models module exporting all database models."""

from .booking import Booking, BookingStatus, PaymentStatus
from .tour import Tour, TourStatus
from .tour_instance import TourInstance, TourInstanceStatus
from .user import User, UserRole

__all__ = [
    # Catalogue
    "Tour",
    "TourStatus",
    "TourInstance",
    "TourInstanceStatus",

    # Booking entities
    "Booking",
    "BookingStatus",
    "PaymentStatus",

    # Identity
    "User",
    "UserRole",
]
