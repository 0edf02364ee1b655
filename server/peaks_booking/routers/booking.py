"""Booking router for customer-facing booking operations."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import ensure_utc
from ..core.dependencies import Controller, DatabaseSession, OptionalAuth, RequiredAuth
from ..core.exceptions import AuthorizationError
from ..models.booking import Booking as BookingModel
from ..schemas.booking import Booking, BookingCreatedResponse, BookingSummary, CreateBookingRequest
from ..schemas.common import Money
from ..services.booking_service import BookingService
from ..services.capacity import ReservationController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/bookings", tags=["bookings"])


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000, description="Why the customer is cancelling")


def _optional_utc(value):
    return ensure_utc(value) if value is not None else None


def convert_booking_to_schema(booking: BookingModel) -> Booking:
    """Convert booking model to schema."""
    return Booking(
        id=str(booking.id),
        reference=booking.reference,
        tour_instance_id=str(booking.tour_instance_id),
        customer_id=str(booking.customer_id),
        participant_count=booking.participant_count,
        lead_participant_name=booking.lead_participant_name,
        lead_participant_email=booking.lead_participant_email,
        lead_participant_phone=booking.lead_participant_phone,
        special_requests=booking.special_requests,
        dietary_restrictions=booking.dietary_restrictions,
        unit_price=Money(amount=booking.unit_price_amount, currency=booking.currency),
        total_amount=Money(amount=booking.total_amount, currency=booking.currency),
        booking_status=booking.booking_status,
        payment_status=booking.payment_status,
        expires_at=_optional_utc(booking.expires_at),
        paid_at=_optional_utc(booking.paid_at),
        cancelled_at=_optional_utc(booking.cancelled_at),
        cancelled_by=booking.cancelled_by,
        cancellation_reason=booking.cancellation_reason,
        refund_amount=booking.refund_amount,
        created_at=_optional_utc(booking.created_at),
    )


def _ensure_can_access(user: dict, booking: BookingModel) -> None:
    if "admin" in user.get("roles", []):
        return
    if user.get("user_id") == str(booking.customer_id):
        return
    email = user.get("email")
    if email and email.lower() == booking.lead_participant_email:
        return
    raise AuthorizationError(detail="You do not have access to this booking")


@router.post("", response_model=BookingCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: CreateBookingRequest,
    db: AsyncSession = DatabaseSession,
    controller: ReservationController = Controller,
    user: Optional[dict] = OptionalAuth,
) -> BookingCreatedResponse:
    """
    Book spots on a tour instance.

    The booking starts in ``pending_payment`` and holds its spots until the
    payment window closes.
    """
    booking = await BookingService(db, controller).create_booking(request, current_user=user)

    return BookingCreatedResponse(
        booking=BookingSummary(
            id=str(booking.id),
            reference=booking.reference,
            total_amount=booking.total_amount,
            currency=booking.currency,
        ),
        message="Booking created successfully",
    )


@router.get("/{booking_id}", response_model=Booking)
async def get_booking(
    booking_id: UUID,
    db: AsyncSession = DatabaseSession,
    controller: ReservationController = Controller,
    user: dict = RequiredAuth,
) -> Booking:
    """Get a booking the caller owns (admins can see any booking)."""
    booking = await BookingService(db, controller).get_booking(booking_id)
    _ensure_can_access(user, booking)
    return convert_booking_to_schema(booking)


@router.post("/{booking_id}/confirm-payment", response_model=Booking)
async def confirm_payment(
    booking_id: UUID,
    db: AsyncSession = DatabaseSession,
    controller: ReservationController = Controller,
    user: dict = RequiredAuth,
) -> Booking:
    """Record that a pending booking has been paid."""
    service = BookingService(db, controller)
    _ensure_can_access(user, await service.get_booking(booking_id))
    booking = await service.confirm_payment(booking_id)
    return convert_booking_to_schema(booking)


@router.post("/{booking_id}/cancel", response_model=Booking)
async def cancel_booking(
    booking_id: UUID,
    request: Optional[CancelBookingRequest] = None,
    db: AsyncSession = DatabaseSession,
    controller: ReservationController = Controller,
    user: dict = RequiredAuth,
) -> Booking:
    """Cancel one of the caller's bookings and return its spots."""
    service = BookingService(db, controller)
    _ensure_can_access(user, await service.get_booking(booking_id))
    booking = await service.cancel_booking(
        booking_id,
        actor=user["user_id"],
        reason=request.reason if request else None,
    )
    return convert_booking_to_schema(booking)
