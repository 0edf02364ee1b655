"""Tour model definition."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .tour_instance import TourInstance


class TourStatus(str, Enum):
    """Tour listing status enumeration."""
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class Tour(Base):
    """Tour entity representing a bookable hiking or photography tour listing."""

    __tablename__ = "tours"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Tour information
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TourStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TourStatus.ACTIVE.value,
        index=True
    )

    # Price per participant, in minor units (e.g., pence)
    base_price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    price_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=12)

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
        CheckConstraint("base_price_amount >= 0", name="ck_tour_base_price_non_negative"),
        CheckConstraint("length(price_currency) = 3", name="ck_tour_price_currency_length"),
        CheckConstraint("max_participants > 0", name="ck_tour_max_participants_positive"),
    )

    instances: Mapped[list["TourInstance"]] = relationship(
        "TourInstance",
        back_populates="tour",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Tour(id={self.id}, name='{self.name}', slug='{self.slug}')>"
