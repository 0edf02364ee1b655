"""Tour catalogue operations."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError
from ..models.tour import Tour, TourStatus
from ..schemas.common import Money
from ..schemas.tour import CreateTourRequest
from ..schemas.tour import Tour as TourSchema

logger = logging.getLogger(__name__)


def tour_to_schema(tour: Tour) -> TourSchema:
    return TourSchema(
        id=str(tour.id),
        name=tour.name,
        slug=tour.slug,
        description=tour.description,
        base_price=Money(amount=tour.base_price_amount, currency=tour.price_currency),
        max_participants=tour.max_participants,
        status=TourStatus(tour.status).value,
    )


class TourService:
    """Service for tour-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _slug_conflict(self, tour: Tour) -> ConflictError:
        return ConflictError(
            detail=f"Tour with slug '{tour.slug}' already exists",
            conflicting_resource={"id": str(tour.id), "slug": tour.slug, "name": tour.name},
        )

    async def create_tour(self, request: CreateTourRequest) -> Tour:
        """
        Create a new tour listing.

        Args:
            request: Tour creation request

        Returns:
            Created tour entity

        Raises:
            ConflictError: If a tour with the same slug already exists
        """
        existing_tour = await self.get_tour_by_slug(request.slug)
        if existing_tour:
            logger.warning(
                "Tour creation failed - slug already exists",
                extra={"slug": request.slug, "existing_tour_id": str(existing_tour.id)}
            )
            raise self._slug_conflict(existing_tour)

        tour = Tour(
            name=request.name,
            slug=request.slug,
            description=request.description,
            base_price_amount=request.base_price.amount,
            price_currency=request.base_price.currency,
            max_participants=request.max_participants,
            status=TourStatus.ACTIVE.value,
        )

        try:
            self.db.add(tour)
            await self.db.commit()
            await self.db.refresh(tour)
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                "Tour creation failed due to integrity constraint",
                extra={"slug": request.slug, "error": str(e)}
            )
            existing_tour = await self.get_tour_by_slug(request.slug)
            if existing_tour:
                raise self._slug_conflict(existing_tour)
            raise ConflictError(detail="Tour creation failed due to constraint violation")

        logger.info(
            "Tour created successfully",
            extra={"tour_id": str(tour.id), "slug": tour.slug}
        )
        return tour

    async def get_tour_by_id(self, tour_id: UUID) -> Optional[Tour]:
        stmt = select(Tour).where(Tour.id == tour_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_slug(self, slug: str) -> Optional[Tour]:
        stmt = select(Tour).where(Tour.slug == slug)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_id_or_raise(self, tour_id: UUID) -> Tour:
        """
        Get tour by ID or raise NotFoundError.

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.get_tour_by_id(tour_id)
        if not tour:
            logger.warning("Tour not found", extra={"tour_id": str(tour_id)})
            raise NotFoundError(resource_type="tour", resource_id=str(tour_id))
        return tour

    async def get_tour_by_slug_or_raise(self, slug: str) -> Tour:
        tour = await self.get_tour_by_slug(slug)
        if not tour:
            raise NotFoundError(resource_type="tour", resource_id=slug)
        return tour
