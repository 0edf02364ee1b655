"""Booking-related Pydantic schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..models.booking import BookingStatus, PaymentStatus
from .common import Money


class CreateBookingRequest(BaseModel):
    """Request schema for creating a booking."""

    tour_instance_id: str = Field(..., description="Tour instance to book")
    participant_count: int = Field(..., ge=1, le=50, description="Number of participants")
    lead_participant_name: str = Field(..., min_length=1, max_length=255, description="Lead participant full name")
    lead_participant_email: str = Field(..., min_length=3, max_length=320, description="Lead participant email")
    lead_participant_phone: str = Field(..., min_length=1, max_length=64, description="Lead participant phone")
    special_requests: Optional[str] = Field(None, max_length=2000, description="Free-text requests")
    dietary_restrictions: Optional[str] = Field(None, max_length=2000, description="Dietary notes")

    @field_validator("lead_participant_name", "lead_participant_phone")
    @classmethod
    def strip_required_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("lead_participant_email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("must be a valid email address")
        return v


class BookingSummary(BaseModel):
    """Minimal booking view returned on creation."""

    id: str = Field(..., description="Unique booking ID")
    reference: str = Field(..., description="Human-readable booking reference")
    total_amount: int = Field(..., description="Total price for all participants in minor units")
    currency: str = Field(..., description="ISO 4217 currency of total_amount")


class BookingCreatedResponse(BaseModel):
    """Response schema for booking creation."""

    booking: BookingSummary
    message: str = "Booking created successfully"


class Booking(BaseModel):
    """Booking detail response schema."""

    id: str = Field(..., description="Unique booking ID")
    reference: str = Field(..., description="Human-readable booking reference")
    tour_instance_id: str = Field(..., description="Booked tour instance")
    customer_id: str = Field(..., description="Customer who owns the booking")
    participant_count: int = Field(..., ge=1, description="Number of participants")
    lead_participant_name: str
    lead_participant_email: str
    lead_participant_phone: str
    special_requests: Optional[str] = None
    dietary_restrictions: Optional[str] = None
    unit_price: Money
    total_amount: Money
    booking_status: BookingStatus
    payment_status: PaymentStatus
    expires_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[int] = None
    created_at: Optional[datetime] = None


class UpdateBookingRequest(BaseModel):
    """Admin update; only these fields may change."""

    booking_status: Optional[BookingStatus] = Field(None, description="Target booking status")
    payment_status: Optional[PaymentStatus] = Field(None, description="Target payment status")
    cancellation_reason: Optional[str] = Field(None, max_length=2000)
    refund_amount: Optional[int] = Field(None, ge=0, description="Refund in minor units")
    special_requests: Optional[str] = Field(None, max_length=2000)

    model_config = {"extra": "forbid"}

class ExpirySweepResponse(BaseModel):
    """Outcome of one expiry sweep."""

    examined: int = Field(..., ge=0)
    expired: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
