"""Tour router for catalogue operations."""

import logging

from fastapi import APIRouter, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import AdminAuth, DatabaseSession
from ..schemas.tour import CreateTourRequest, Tour
from ..schemas.tour_instance import AvailableInstancesResponse
from ..services.tour_instance_service import TourInstanceService, instance_to_schema, tour_to_summary
from ..services.tour_service import TourService, tour_to_schema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tours", tags=["tours"])


@router.post("", response_model=Tour, status_code=status.HTTP_201_CREATED, dependencies=[AdminAuth])
async def create_tour(
    request: CreateTourRequest,
    db: AsyncSession = DatabaseSession,
) -> Tour:
    """Create a new tour listing (admin only)."""
    tour = await TourService(db).create_tour(request)
    return tour_to_schema(tour)


@router.get("/{slug}/instances", response_model=AvailableInstancesResponse)
async def list_instances(
    slug: str,
    db: AsyncSession = DatabaseSession,
) -> AvailableInstancesResponse:
    """Upcoming instances of a tour that can still be booked, with spots left and price."""
    tour, instances = await TourInstanceService(db).list_available_instances(slug)
    return AvailableInstancesResponse(
        tour=tour_to_summary(tour),
        instances=[instance_to_schema(instance, tour) for instance in instances],
    )
