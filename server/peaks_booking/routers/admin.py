"""Admin router: booking edits, expiry sweeps and tour instance management."""

import logging
from uuid import UUID

from fastapi import APIRouter, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import AdminAuth, Controller, DatabaseSession
from ..schemas.booking import Booking, ExpirySweepResponse, UpdateBookingRequest
from ..schemas.tour_instance import CreateTourInstanceRequest, TourInstance, UpdateTourInstanceRequest
from ..services.booking_service import BookingService
from ..services.capacity import ReservationController
from ..services.tour_instance_service import TourInstanceService, instance_to_schema
from ..services.tour_service import TourService
from .booking import convert_booking_to_schema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"], dependencies=[AdminAuth])


@router.patch("/bookings/{booking_id}", response_model=Booking)
async def update_booking(
    booking_id: UUID,
    request: UpdateBookingRequest,
    db: AsyncSession = DatabaseSession,
    controller: ReservationController = Controller,
) -> Booking:
    """
    Edit a booking.

    Setting ``booking_status`` to ``cancelled`` releases the booking's spots
    before the status changes; if the release fails nothing is changed.
    """
    booking = await BookingService(db, controller).apply_admin_update(booking_id, request)
    return convert_booking_to_schema(booking)


@router.post("/bookings/expire", response_model=ExpirySweepResponse)
async def expire_bookings(
    batch_size: int | None = Query(None, ge=1, le=1000),
    db: AsyncSession = DatabaseSession,
    controller: ReservationController = Controller,
) -> ExpirySweepResponse:
    """Run one expiry sweep now instead of waiting for the background worker."""
    result = await BookingService(db, controller).expire_stale_bookings(batch_size=batch_size)
    return ExpirySweepResponse(examined=result.examined, expired=result.expired, failed=result.failed)


@router.post(
    "/tours/{tour_id}/instances",
    response_model=TourInstance,
    status_code=status.HTTP_201_CREATED,
)
async def create_instance(
    tour_id: UUID,
    request: CreateTourInstanceRequest,
    db: AsyncSession = DatabaseSession,
) -> TourInstance:
    """Schedule a new instance of a tour."""
    instance = await TourInstanceService(db).create_instance(tour_id, request)
    tour = await TourService(db).get_tour_by_id_or_raise(tour_id)
    return instance_to_schema(instance, tour)


@router.patch("/instances/{instance_id}", response_model=TourInstance)
async def update_instance(
    instance_id: UUID,
    request: UpdateTourInstanceRequest,
    db: AsyncSession = DatabaseSession,
    controller: ReservationController = Controller,
) -> TourInstance:
    """Edit schedule, price, capacity or status of a tour instance."""
    instance = await TourInstanceService(db, controller).update_instance(instance_id, request)
    tour = await TourService(db).get_tour_by_id_or_raise(instance.tour_id)
    return instance_to_schema(instance, tour)


@router.delete("/instances/{instance_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_instance(
    instance_id: UUID,
    db: AsyncSession = DatabaseSession,
) -> Response:
    """Delete an instance that has never been booked."""
    await TourInstanceService(db).delete_instance(instance_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
