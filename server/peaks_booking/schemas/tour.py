"""Tour-related Pydantic schemas."""

from pydantic import BaseModel, Field

from .common import Money


class CreateTourRequest(BaseModel):
    """Request schema for creating a tour."""

    name: str = Field(..., min_length=1, max_length=255, description="Tour name")
    slug: str = Field(..., min_length=1, max_length=255, pattern=r"^[a-z0-9-]+$", description="URL-friendly slug")
    description: str = Field(..., min_length=1, max_length=5000, description="Tour description")
    base_price: Money = Field(..., description="Price per participant")
    max_participants: int = Field(12, ge=1, le=50, description="Default group size")


class Tour(BaseModel):
    """Tour response schema."""

    id: str = Field(..., description="Unique tour ID")
    name: str = Field(..., description="Tour name")
    slug: str = Field(..., description="URL-friendly slug")
    description: str | None = Field(None, description="Tour description")
    base_price: Money = Field(..., description="Price per participant")
    max_participants: int = Field(..., description="Default group size")
    status: str = Field(..., description="Listing status")
