"""Booking model definition and status state machines."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .tour_instance import TourInstance
    from .user import User


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    REFUNDED = "refunded"


BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING_PAYMENT: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    }),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.COMPLETED, PaymentStatus.REFUNDED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# Statuses whose booking still holds a capacity grant
ACTIVE_STATUSES = (BookingStatus.PENDING_PAYMENT.value, BookingStatus.CONFIRMED.value)


def can_transition(current: str, target: str) -> bool:
    """Return True if the booking state machine allows current -> target."""
    return BookingStatus(target) in BOOKING_TRANSITIONS[BookingStatus(current)]


def can_transition_payment(current: str, target: str) -> bool:
    """Return True if the payment state machine allows current -> target."""
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


class Booking(Base):
    """Booking entity: one customer's capacity grant on one tour instance."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    reference: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)

    tour_instance_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tour_instances.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    customer_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Lead participant contact
    lead_participant_name: Mapped[str] = mapped_column(String(255), nullable=False)
    lead_participant_email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    lead_participant_phone: Mapped[str] = mapped_column(String(64), nullable=False)
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)
    dietary_restrictions: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Pricing (minor units)
    unit_price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Lifecycle
    booking_status: Mapped[BookingStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.PENDING_PAYMENT.value,
        index=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Cancellation metadata
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("participant_count >= 1", name="ck_booking_participants_positive"),
        CheckConstraint("participant_count <= 50", name="ck_booking_participants_max"),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_non_negative"),
        CheckConstraint("length(reference) > 0", name="ck_booking_reference_not_empty"),
        CheckConstraint(
            "refund_amount IS NULL OR refund_amount >= 0",
            name="ck_booking_refund_non_negative"
        ),
        # Expiry sweep: pending bookings ordered by deadline
        Index("ix_bookings_pending_expiry", "booking_status", "expires_at"),
    )

    tour_instance: Mapped["TourInstance"] = relationship("TourInstance", back_populates="bookings")
    customer: Mapped["User"] = relationship("User", back_populates="bookings")

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, reference='{self.reference}', "
            f"instance={self.tour_instance_id}, participants={self.participant_count}, "
            f"status={self.booking_status})>"
        )
