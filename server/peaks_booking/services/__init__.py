"""Service layer package."""

from .booking_service import BookingService, ExpirySweepResult
from .capacity import Reservation, ReservationController, SqlCapacityStore
from .customer_service import CustomerService
from .reference import ReferenceGenerator, generate_reference
from .saga import Saga, SagaStep
from .tour_instance_service import TourInstanceService
from .tour_service import TourService

__all__ = [
    "BookingService",
    "CustomerService",
    "ExpirySweepResult",
    "ReferenceGenerator",
    "Reservation",
    "ReservationController",
    "Saga",
    "SagaStep",
    "SqlCapacityStore",
    "TourInstanceService",
    "TourService",
    "generate_reference",
]
