"""Tour instance scheduling, listing and admin edits."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import ensure_utc, utcnow
from ..core.exceptions import ConflictError, NotFoundError, StorageError, ValidationError
from ..models.booking import ACTIVE_STATUSES, Booking
from ..models.tour import Tour, TourStatus
from ..models.tour_instance import TourInstance, TourInstanceStatus
from ..schemas.common import Money
from ..schemas.tour_instance import CreateTourInstanceRequest, TourSummary, UpdateTourInstanceRequest
from ..schemas.tour_instance import TourInstance as TourInstanceSchema
from .capacity import ReservationController
from .tour_service import TourService

logger = logging.getLogger(__name__)

# Statuses an admin may set directly; scheduled/full follow the capacity counter
MANUAL_STATUSES = (TourInstanceStatus.CANCELLED.value, TourInstanceStatus.COMPLETED.value)


def instance_to_schema(instance: TourInstance, tour: Tour) -> TourInstanceSchema:
    price = instance.price_override_amount
    if price is None:
        price = tour.base_price_amount
    return TourInstanceSchema(
        id=str(instance.id),
        tour_id=str(instance.tour_id),
        start_datetime=ensure_utc(instance.start_datetime),
        end_datetime=ensure_utc(instance.end_datetime),
        capacity_max=instance.capacity_max,
        capacity_booked=instance.capacity_booked,
        available_spots=instance.available_spots,
        status=TourInstanceStatus(instance.status),
        price=Money(amount=price, currency=tour.price_currency),
    )


def tour_to_summary(tour: Tour) -> TourSummary:
    return TourSummary(
        id=str(tour.id),
        name=tour.name,
        base_price=Money(amount=tour.base_price_amount, currency=tour.price_currency),
    )


class TourInstanceService:
    """Service for tour instance operations."""

    def __init__(self, db: AsyncSession, controller: Optional[ReservationController] = None):
        self.db = db
        self.controller = controller
        self.tour_service = TourService(db)

    async def create_instance(self, tour_id: UUID, request: CreateTourInstanceRequest) -> TourInstance:
        """
        Schedule a new instance of a tour with an empty capacity counter.

        Raises:
            NotFoundError: If tour not found
        """
        await self.tour_service.get_tour_by_id_or_raise(tour_id)

        instance = TourInstance(
            tour_id=tour_id,
            start_datetime=ensure_utc(request.start_datetime),
            end_datetime=ensure_utc(request.end_datetime),
            capacity_max=request.capacity_max,
            capacity_booked=0,
            status=TourInstanceStatus.SCHEDULED.value,
            price_override_amount=request.price_override_amount,
        )

        try:
            self.db.add(instance)
            await self.db.commit()
            await self.db.refresh(instance)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("tour_instance.create", cause=e) from e

        logger.info(
            "Tour instance created",
            extra={
                "tour_instance_id": str(instance.id),
                "tour_id": str(tour_id),
                "start_datetime": instance.start_datetime.isoformat(),
                "capacity_max": instance.capacity_max,
            }
        )
        return instance

    async def get_instance(self, instance_id: UUID) -> TourInstance:
        stmt = (
            select(TourInstance)
            .where(TourInstance.id == instance_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        instance = result.scalar_one_or_none()
        if instance is None:
            raise NotFoundError(resource_type="tour instance", resource_id=str(instance_id))
        return instance

    async def list_available_instances(
        self,
        slug: str,
        now: Optional[datetime] = None,
    ) -> tuple[Tour, list[TourInstance]]:
        """
        Upcoming scheduled instances of an active tour that still have room.

        Raises:
            NotFoundError: If no active tour has this slug
        """
        tour = await self.tour_service.get_tour_by_slug(slug)
        if tour is None or TourStatus(tour.status) != TourStatus.ACTIVE:
            raise NotFoundError(resource_type="tour", resource_id=slug)

        stmt = (
            select(TourInstance)
            .where(
                TourInstance.tour_id == tour.id,
                TourInstance.status == TourInstanceStatus.SCHEDULED.value,
                TourInstance.start_datetime > (now or utcnow()),
                TourInstance.capacity_booked < TourInstance.capacity_max,
            )
            .order_by(TourInstance.start_datetime.asc())
        )
        result = await self.db.execute(stmt)
        return tour, list(result.scalars())

    async def update_instance(self, instance_id: UUID, request: UpdateTourInstanceRequest) -> TourInstance:
        """
        Apply an admin edit to an instance.

        Capacity changes go through the reservation controller so they can
        never drop below what is already booked.

        Raises:
            NotFoundError: If the instance does not exist
            ValidationError: If nothing was supplied, the window is inverted or the status is not settable
            CapacityResizeError: If capacity_max is below the booked count
        """
        fields = request.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError(detail="No valid fields to update")

        instance = await self.get_instance(instance_id)

        values = {}
        start = fields.get("start_datetime", instance.start_datetime)
        end = fields.get("end_datetime", instance.end_datetime)
        if "start_datetime" in fields or "end_datetime" in fields:
            if start is None or end is None or ensure_utc(end) <= ensure_utc(start):
                raise ValidationError(
                    detail="end_datetime must be after start_datetime",
                    violations=[{"path": "end_datetime", "message": "must be after start_datetime"}],
                )
            values["start_datetime"] = ensure_utc(start)
            values["end_datetime"] = ensure_utc(end)

        if "price_override_amount" in fields:
            values["price_override_amount"] = fields["price_override_amount"]

        status = fields.get("status")
        if status is not None:
            status = TourInstanceStatus(status).value
            if status not in MANUAL_STATUSES:
                raise ValidationError(
                    detail="Only 'cancelled' or 'completed' can be set directly",
                    violations=[{"path": "status", "message": "must be 'cancelled' or 'completed'"}],
                )
            values["status"] = status
        if "cancellation_reason" in fields:
            values["cancellation_reason"] = fields["cancellation_reason"]

        if fields.get("capacity_max") is not None:
            if self.controller is None:
                raise RuntimeError("capacity edits need a reservation controller")
            await self.controller.resize(instance_id, fields["capacity_max"])

        if values:
            stmt = (
                update(TourInstance)
                .where(TourInstance.id == instance_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            try:
                await self.db.execute(stmt)
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StorageError("tour_instance.update", cause=e) from e

        logger.info(
            "Tour instance updated",
            extra={"tour_instance_id": str(instance_id), "fields": sorted(fields)}
        )
        return await self.get_instance(instance_id)

    async def delete_instance(self, instance_id: UUID) -> None:
        """
        Delete an instance that has no active bookings.

        Raises:
            NotFoundError: If the instance does not exist
            ConflictError: If pending or confirmed bookings still reference it
        """
        await self.get_instance(instance_id)

        stmt = select(func.count(Booking.id)).where(
            Booking.tour_instance_id == instance_id,
            Booking.booking_status.in_(ACTIVE_STATUSES),
        )
        active = (await self.db.execute(stmt)).scalar() or 0
        if active:
            raise ConflictError(
                detail=f"Cannot delete: {active} active booking(s) exist for this instance",
                conflicting_resource={"tour_instance_id": str(instance_id), "active_bookings": active},
            )

        total = (await self.db.execute(
            select(func.count(Booking.id)).where(Booking.tour_instance_id == instance_id)
        )).scalar() or 0
        if total:
            raise ConflictError(
                detail="Cannot delete: bookings are retained for this instance; cancel it instead",
                conflicting_resource={"tour_instance_id": str(instance_id)},
            )

        try:
            await self.db.execute(delete(TourInstance).where(TourInstance.id == instance_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("tour_instance.delete", cause=e) from e

        logger.info("Tour instance deleted", extra={"tour_instance_id": str(instance_id)})
