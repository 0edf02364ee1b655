"""Tour instance Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from ..models.tour_instance import TourInstanceStatus
from .common import Money


class CreateTourInstanceRequest(BaseModel):
    """Request schema for scheduling a tour instance."""

    start_datetime: datetime = Field(..., description="Start time (ISO 8601)")
    end_datetime: datetime = Field(..., description="End time (ISO 8601)")
    capacity_max: int = Field(12, ge=1, le=1000, description="Total capacity")
    price_override_amount: int | None = Field(None, ge=0, description="Per-participant price override in minor units")

    @model_validator(mode="after")
    def check_window(self):
        if self.end_datetime <= self.start_datetime:
            raise ValueError("end_datetime must be after start_datetime")
        return self


class UpdateTourInstanceRequest(BaseModel):
    """Admin edit of a tour instance; omitted fields stay unchanged."""

    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    capacity_max: int | None = Field(None, ge=0, le=1000)
    price_override_amount: int | None = Field(None, ge=0)
    status: TourInstanceStatus | None = None
    cancellation_reason: str | None = Field(None, max_length=2000)


class TourInstance(BaseModel):
    """Tour instance response schema."""

    id: str = Field(..., description="Unique instance ID")
    tour_id: str = Field(..., description="Parent tour ID")
    start_datetime: datetime
    end_datetime: datetime
    capacity_max: int = Field(..., ge=0)
    capacity_booked: int = Field(..., ge=0)
    available_spots: int = Field(..., ge=0)
    status: TourInstanceStatus
    price: Money = Field(..., description="Effective per-participant price")


class TourSummary(BaseModel):
    id: str
    name: str
    base_price: Money


class AvailableInstancesResponse(BaseModel):
    """Upcoming bookable instances for one tour."""

    tour: TourSummary
    instances: list[TourInstance] = Field(default_factory=list)
