"""Tour instance model definition."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .booking import Booking
    from .tour import Tour


class TourInstanceStatus(str, Enum):
    """Tour instance status enumeration."""
    SCHEDULED = "scheduled"
    FULL = "full"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses in which the capacity counter may still move
BOOKABLE_STATUSES = (TourInstanceStatus.SCHEDULED.value, TourInstanceStatus.FULL.value)


class TourInstance(Base):
    """
    One dated occurrence of a tour with its own capacity.

    ``capacity_booked`` is written only by ``services.capacity``; everything
    else reads it.
    """

    __tablename__ = "tour_instances"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Schedule
    start_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Capacity
    capacity_max: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_booked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[TourInstanceStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TourInstanceStatus.SCHEDULED.value,
        index=True
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Per-instance price, in minor units; falls back to the tour's base price
    price_override_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)

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
        CheckConstraint("capacity_max >= 0", name="ck_instance_capacity_max_non_negative"),
        CheckConstraint("capacity_booked >= 0", name="ck_instance_capacity_booked_non_negative"),
        CheckConstraint("capacity_booked <= capacity_max", name="ck_instance_capacity_booked_lte_max"),
        CheckConstraint("end_datetime > start_datetime", name="ck_instance_end_after_start"),
        CheckConstraint(
            "price_override_amount IS NULL OR price_override_amount >= 0",
            name="ck_instance_price_override_non_negative"
        ),
    )

    tour: Mapped["Tour"] = relationship("Tour", back_populates="instances")
    bookings: Mapped[list["Booking"]] = relationship("Booking", back_populates="tour_instance")

    @property
    def available_spots(self) -> int:
        return max(self.capacity_max - self.capacity_booked, 0)

    def __repr__(self) -> str:
        return (
            f"<TourInstance(id={self.id}, tour_id={self.tour_id}, "
            f"start={self.start_datetime}, capacity={self.capacity_booked}/{self.capacity_max}, "
            f"status={self.status})>"
        )
