"""Capacity reservation controller and its SQL-backed capacity store.

Every write to ``tour_instances.capacity_booked`` goes through this module.
Reservations use optimistic concurrency: read the counter, then write it
back only if it still holds the observed value. Lost races re-read and try
again a bounded number of times.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import settings
from ..core.exceptions import (
    CapacityError,
    CapacityResizeError,
    ContentionError,
    NotFoundError,
    StorageError,
    TourInstanceUnavailableError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.tour_instance import BOOKABLE_STATUSES, TourInstance, TourInstanceStatus

logger = logging.getLogger(__name__)

INCREMENT_OPERATION = "capacity.conditional_increment"


@dataclass(frozen=True)
class Reservation:
    """A successful capacity grant. Owned by whoever called ``try_reserve``."""

    instance_id: UUID
    granted_count: int


@dataclass(frozen=True)
class CapacitySnapshot:
    """Counter values observed in a single read."""

    instance_id: UUID
    capacity_max: int
    capacity_booked: int
    status: str

    @property
    def available(self) -> int:
        return self.capacity_max - self.capacity_booked


class SqlCapacityStore:
    """
    Capacity counters stored on the ``tour_instances`` table.

    Each call runs in its own short transaction unless a session is passed in,
    in which case the statement joins that session's transaction and the
    caller owns the commit.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _execute(self, operation: str, stmt, session: Optional[AsyncSession] = None):
        try:
            if session is not None:
                return await session.execute(stmt)
            async with self._session_factory() as own_session:
                async with own_session.begin():
                    return await own_session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Capacity store operation failed",
                extra={"operation": operation, "error": repr(e)}
            )
            raise StorageError(operation, cause=e) from e

    async def read(self, instance_id: UUID) -> Optional[CapacitySnapshot]:
        """Return the current counters, or None if the instance does not exist."""
        stmt = select(
            TourInstance.capacity_max,
            TourInstance.capacity_booked,
            TourInstance.status,
        ).where(TourInstance.id == instance_id)

        result = await self._execute("capacity.read", stmt)
        row = result.one_or_none()
        if row is None:
            return None

        return CapacitySnapshot(
            instance_id=instance_id,
            capacity_max=row.capacity_max,
            capacity_booked=row.capacity_booked,
            status=TourInstanceStatus(row.status).value,
        )

    async def conditional_increment(
        self,
        instance_id: UUID,
        expected_current: int,
        delta: int,
        ceiling: int,
    ) -> bool:
        """
        Add ``delta`` to the counter only if it still equals ``expected_current``.

        The stored ``capacity_max`` is re-checked in the same statement so a
        concurrent resize cannot be overrun. Returns False when another writer
        changed the row first.
        """
        new_booked = expected_current + delta
        if new_booked > ceiling:
            return False

        stmt = (
            update(TourInstance)
            .where(
                TourInstance.id == instance_id,
                TourInstance.capacity_booked == expected_current,
                TourInstance.capacity_max >= new_booked,
                TourInstance.status.in_(BOOKABLE_STATUSES),
            )
            .values(
                capacity_booked=new_booked,
                status=case(
                    (TourInstance.capacity_max <= new_booked, TourInstanceStatus.FULL.value),
                    else_=TourInstanceStatus.SCHEDULED.value,
                ),
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._execute(INCREMENT_OPERATION, stmt)
        return result.rowcount == 1

    async def decrement(
        self,
        instance_id: UUID,
        count: int,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """Subtract ``count`` from the counter, never going below zero."""
        stmt = (
            update(TourInstance)
            .where(TourInstance.id == instance_id)
            .values(
                capacity_booked=case(
                    (TourInstance.capacity_booked >= count, TourInstance.capacity_booked - count),
                    else_=0,
                ),
                status=case(
                    (TourInstance.status == TourInstanceStatus.FULL.value, TourInstanceStatus.SCHEDULED.value),
                    else_=TourInstance.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._execute("capacity.decrement", stmt, session=session)
        return result.rowcount == 1

    async def set_ceiling(self, instance_id: UUID, new_max: int) -> bool:
        """Change ``capacity_max`` provided it stays at or above the booked count."""
        stmt = (
            update(TourInstance)
            .where(
                TourInstance.id == instance_id,
                TourInstance.capacity_booked <= new_max,
            )
            .values(
                capacity_max=new_max,
                status=case(
                    (
                        TourInstance.status.in_(BOOKABLE_STATUSES),
                        case(
                            (TourInstance.capacity_booked >= new_max, TourInstanceStatus.FULL.value),
                            else_=TourInstanceStatus.SCHEDULED.value,
                        ),
                    ),
                    else_=TourInstance.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._execute("capacity.set_ceiling", stmt)
        return result.rowcount == 1


class ReservationController:
    """
    Grants and returns tour instance capacity without ever overbooking.

    ``try_reserve`` runs a read / conditional-write cycle. A write that loses
    to a concurrent writer re-reads and retries up to ``max_attempts`` times
    with jittered exponential backoff, then gives up with ``ContentionError``.
    """

    def __init__(
        self,
        store: SqlCapacityStore,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.max_attempts = settings.reservation_max_attempts if max_attempts is None else max_attempts
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.backoff_seconds = (
            settings.reservation_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.backoff_max_seconds = (
            settings.reservation_backoff_max_seconds if backoff_max_seconds is None else backoff_max_seconds
        )
        self._sleep = sleep

    @classmethod
    def for_sessions(cls, session_factory: async_sessionmaker[AsyncSession], **kwargs) -> "ReservationController":
        """Build a controller over the SQL store for the given session factory."""
        return cls(SqlCapacityStore(session_factory), **kwargs)

    def _backoff_delay(self, attempt: int) -> float:
        ceiling = min(self.backoff_max_seconds, self.backoff_seconds * (2 ** (attempt - 1)))
        return random.uniform(0, ceiling)

    async def _load(self, instance_id: UUID) -> CapacitySnapshot:
        snapshot = await self.store.read(instance_id)
        if snapshot is None:
            raise NotFoundError(resource_type="tour instance", resource_id=str(instance_id))
        return snapshot

    async def try_reserve(self, instance_id: UUID, requested_count: int) -> Reservation:
        """
        Reserve ``requested_count`` spots on a tour instance.

        Raises:
            ValidationError: If requested_count is below 1
            NotFoundError: If the instance does not exist
            TourInstanceUnavailableError: If the instance is cancelled or completed
            CapacityError: If fewer than requested_count spots remain
            ContentionError: If every attempt lost to a concurrent writer
            StorageError: If the capacity store fails
        """
        if requested_count < 1:
            raise ValidationError(
                detail="At least one spot must be requested",
                violations=[{"path": "participant_count", "message": "must be at least 1"}],
            )

        for attempt in range(1, self.max_attempts + 1):
            snapshot = await self._load(instance_id)

            if snapshot.status not in BOOKABLE_STATUSES:
                raise TourInstanceUnavailableError(str(instance_id), snapshot.status)

            if snapshot.available < requested_count:
                metrics_collector.record_capacity_rejection()
                logger.info(
                    "Reservation rejected - insufficient capacity",
                    extra={
                        "tour_instance_id": str(instance_id),
                        "requested": requested_count,
                        "available": snapshot.available,
                    }
                )
                raise CapacityError(str(instance_id), requested_count, snapshot.available)

            granted = await self.store.conditional_increment(
                instance_id,
                expected_current=snapshot.capacity_booked,
                delta=requested_count,
                ceiling=snapshot.capacity_max,
            )
            if granted:
                metrics_collector.record_reserved(requested_count)
                logger.info(
                    "Capacity reserved",
                    extra={
                        "tour_instance_id": str(instance_id),
                        "granted": requested_count,
                        "capacity_booked": snapshot.capacity_booked + requested_count,
                        "capacity_max": snapshot.capacity_max,
                        "attempt": attempt,
                    }
                )
                return Reservation(instance_id=instance_id, granted_count=requested_count)

            metrics_collector.record_write_conflict()
            logger.debug(
                "Conditional capacity write lost a race; re-reading",
                extra={"tour_instance_id": str(instance_id), "attempt": attempt}
            )
            if attempt < self.max_attempts:
                await self._sleep(self._backoff_delay(attempt))

        metrics_collector.record_contention_exhausted()
        logger.warning(
            "Reservation gave up after repeated write conflicts",
            extra={
                "tour_instance_id": str(instance_id),
                "requested": requested_count,
                "attempts": self.max_attempts,
            }
        )
        raise ContentionError(str(instance_id), self.max_attempts)

    async def release(
        self,
        instance_id: UUID,
        granted_count: int,
        session: Optional[AsyncSession] = None,
    ) -> None:
        """
        Return ``granted_count`` spots to a tour instance.

        With ``session`` the decrement joins the caller's transaction and is
        only durable once the caller commits.
        """
        if granted_count < 1:
            raise ValidationError(
                detail="Released count must be at least 1",
                violations=[{"path": "granted_count", "message": "must be at least 1"}],
            )

        found = await self.store.decrement(instance_id, granted_count, session=session)
        if not found:
            raise NotFoundError(resource_type="tour instance", resource_id=str(instance_id))

        metrics_collector.record_released(granted_count)
        logger.info(
            "Capacity released",
            extra={
                "tour_instance_id": str(instance_id),
                "released": granted_count,
                "deferred_commit": session is not None,
            }
        )

    async def resize(self, instance_id: UUID, new_capacity_max: int) -> CapacitySnapshot:
        """
        Change an instance's total capacity.

        Raises:
            NotFoundError: If the instance does not exist
            CapacityResizeError: If more spots are already booked than new_capacity_max
        """
        if new_capacity_max < 0:
            raise ValidationError(
                detail="Capacity cannot be negative",
                violations=[{"path": "capacity_max", "message": "must be at least 0"}],
            )

        if not await self.store.set_ceiling(instance_id, new_capacity_max):
            snapshot = await self._load(instance_id)
            logger.warning(
                "Capacity resize rejected - below booked count",
                extra={
                    "tour_instance_id": str(instance_id),
                    "requested_max": new_capacity_max,
                    "capacity_booked": snapshot.capacity_booked,
                }
            )
            raise CapacityResizeError(str(instance_id), new_capacity_max, snapshot.capacity_booked)

        snapshot = await self._load(instance_id)
        logger.info(
            "Capacity resized",
            extra={
                "tour_instance_id": str(instance_id),
                "capacity_max": snapshot.capacity_max,
                "capacity_booked": snapshot.capacity_booked,
            }
        )
        return snapshot
