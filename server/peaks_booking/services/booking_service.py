"""Booking lifecycle: creation saga, cancellation, payment confirmation and expiry."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.clock import utcnow
from ..core.config import settings
from ..core.exceptions import (
    BookingExpiredError,
    InvalidBookingTransitionError,
    NotFoundError,
    ReconciliationAlert,
    StorageError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.booking import (
    Booking,
    BookingStatus,
    PaymentStatus,
    can_transition,
    can_transition_payment,
)
from ..models.tour_instance import TourInstance
from ..schemas.booking import CreateBookingRequest, UpdateBookingRequest
from .capacity import INCREMENT_OPERATION, Reservation, ReservationController
from .customer_service import CustomerService
from .reference import ReferenceGenerator, reference_exists
from .saga import Saga, SagaStep

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
ADMIN_ACTOR = "admin"
EXPIRED_REASON = "expired"


@dataclass(frozen=True)
class ExpirySweepResult:
    examined: int
    expired: int
    failed: int


def emit_reconciliation_alert(alert: ReconciliationAlert) -> None:
    """Log and count a grant that could not be returned automatically."""
    logger.error("Capacity reconciliation required", extra=alert.as_log_context())
    metrics_collector.record_reconciliation_alert(alert.kind)


def resolve_unit_price(instance: TourInstance) -> tuple[int, str]:
    """Per-participant price in minor units: the instance override, else the tour base price."""
    tour = instance.tour
    if instance.price_override_amount is not None:
        return instance.price_override_amount, tour.price_currency
    return tour.base_price_amount, tour.price_currency


def _parse_uuid(value: str, field: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(
            detail=f"{field} must be a valid UUID",
            violations=[{"path": field, "message": "must be a valid UUID"}],
        )


class BookingService:
    """
    Service for booking lifecycle operations.

    Capacity changes always go through ``controller``. Creation reserves
    first and persists second, releasing the grant again if persisting fails.
    Cancellation releases and flips the status in a single transaction.
    """

    def __init__(
        self,
        db: AsyncSession,
        controller: ReservationController,
        reference_choice: Callable[[Sequence[str]], str] = secrets.choice,
    ):
        self.db = db
        self.controller = controller
        self.reference_choice = reference_choice

    # Queries

    async def get_booking_by_id(self, booking_id: UUID) -> Booking | None:
        """Get booking by ID, always refreshing from the database."""
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError("booking.get", cause=e) from e
        return result.scalar_one_or_none()

    async def get_booking(self, booking_id: UUID) -> Booking:
        """Get booking by ID or raise NotFoundError."""
        booking = await self.get_booking_by_id(booking_id)
        if not booking:
            logger.warning(
                "Booking not found",
                extra={"booking_id": str(booking_id)}
            )
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def _load_instance(self, instance_id: UUID) -> TourInstance:
        stmt = (
            select(TourInstance)
            .options(selectinload(TourInstance.tour))
            .where(TourInstance.id == instance_id)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError("tour_instance.get", cause=e) from e
        instance = result.scalar_one_or_none()
        if instance is None:
            raise NotFoundError(resource_type="tour instance", resource_id=str(instance_id))
        return instance

    # Creation

    async def create_booking(self, request: CreateBookingRequest, current_user: Optional[dict] = None) -> Booking:
        """
        Create a booking in ``pending_payment``.

        Steps: reserve capacity, then allocate a reference and persist. If the
        second step fails the reservation is released in its own transaction.
        A reserve write whose outcome is unknown is re-checked and, if the
        grant may have landed, flagged for reconciliation.

        Raises:
            ValidationError: If participant_count is out of bounds or ids are malformed
            NotFoundError: If the tour instance does not exist
            TourInstanceUnavailableError: If the instance is not open for booking
            CapacityError: If there is not enough room
            ContentionError: If concurrent bookings kept winning the counter
            StorageError, ReferenceGenerationError: If persisting failed
        """
        if not 1 <= request.participant_count <= settings.max_participants_per_booking:
            raise ValidationError(
                detail=f"participant_count must be between 1 and {settings.max_participants_per_booking}",
                violations=[{
                    "path": "participant_count",
                    "message": f"must be between 1 and {settings.max_participants_per_booking}",
                }],
            )

        instance_id = _parse_uuid(request.tour_instance_id, "tour_instance_id")
        instance = await self._load_instance(instance_id)
        unit_price, currency = resolve_unit_price(instance)

        customer_id = await CustomerService(self.db).resolve_customer_id(
            current_user,
            email=request.lead_participant_email,
            full_name=request.lead_participant_name,
            phone=request.lead_participant_phone,
        )

        async def reserve() -> Reservation:
            try:
                return await self.controller.try_reserve(instance_id, request.participant_count)
            except StorageError as e:
                if e.operation == INCREMENT_OPERATION:
                    await self._check_unknown_reservation(instance_id, request.participant_count, e)
                raise

        async def release(reservation: Reservation) -> None:
            await self.controller.release(reservation.instance_id, reservation.granted_count)

        async def persist() -> Booking:
            return await self._persist_booking(
                request,
                instance_id=instance_id,
                customer_id=customer_id,
                unit_price=unit_price,
                currency=currency,
            )

        def on_compensation_failure(step: SagaStep, reservation: Reservation, error, original_error) -> None:
            emit_reconciliation_alert(ReconciliationAlert(
                kind="create_compensation_failed",
                instance_id=str(reservation.instance_id),
                granted_count=reservation.granted_count,
                cause=error,
            ))

        saga = Saga(
            name="create_booking",
            steps=[
                SagaStep("reserve_capacity", reserve, release),
                SagaStep("persist_booking", persist),
            ],
            on_compensation_failure=on_compensation_failure,
        )
        _, booking = await saga.run()

        metrics_collector.record_booking_created()
        logger.info(
            "Booking created",
            extra={
                "booking_id": str(booking.id),
                "reference": booking.reference,
                "tour_instance_id": str(instance_id),
                "participant_count": booking.participant_count,
                "total_amount": booking.total_amount,
                "expires_at": booking.expires_at.isoformat(),
            }
        )
        return booking

    async def _check_unknown_reservation(self, instance_id: UUID, requested_count: int, error: StorageError) -> None:
        """
        Re-read the counter after a conditional write failed mid-flight.

        Other callers only ever release their own grants, so a counter below
        ``requested_count`` cannot contain ours. Anything else might, and is
        flagged for reconciliation.
        """
        try:
            snapshot = await self.controller.store.read(instance_id)
        except StorageError:
            snapshot = None

        if snapshot is not None and snapshot.capacity_booked < requested_count:
            logger.warning(
                "Capacity write failed but the counter shows no grant",
                extra={
                    "tour_instance_id": str(instance_id),
                    "requested": requested_count,
                    "capacity_booked": snapshot.capacity_booked,
                }
            )
            return

        emit_reconciliation_alert(ReconciliationAlert(
            kind="reserve_outcome_unknown",
            instance_id=str(instance_id),
            granted_count=requested_count,
            cause=error,
        ))

    async def _persist_booking(
        self,
        request: CreateBookingRequest,
        instance_id: UUID,
        customer_id: UUID,
        unit_price: int,
        currency: str,
    ) -> Booking:
        generator = ReferenceGenerator(
            exists=lambda candidate: reference_exists(self.db, candidate),
            choice=self.reference_choice,
        )

        try:
            reference = await generator.next_reference()
            booking = Booking(
                reference=reference,
                tour_instance_id=instance_id,
                customer_id=customer_id,
                lead_participant_name=request.lead_participant_name,
                lead_participant_email=request.lead_participant_email,
                lead_participant_phone=request.lead_participant_phone,
                participant_count=request.participant_count,
                special_requests=request.special_requests,
                dietary_restrictions=request.dietary_restrictions,
                unit_price_amount=unit_price,
                total_amount=unit_price * request.participant_count,
                currency=currency,
                booking_status=BookingStatus.PENDING_PAYMENT.value,
                payment_status=PaymentStatus.PENDING.value,
                expires_at=utcnow() + timedelta(minutes=settings.booking_payment_window_minutes),
            )
            self.db.add(booking)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Failed to persist booking",
                extra={"tour_instance_id": str(instance_id), "error": repr(e)}
            )
            raise StorageError("booking.persist", cause=e) from e

        return booking

    # Cancellation

    async def cancel_booking(
        self,
        booking_id: UUID,
        actor: str,
        reason: Optional[str] = None,
        refund_amount: Optional[int] = None,
    ) -> Booking:
        """
        Cancel a booking and return its spots.

        Cancelling an already cancelled booking returns it unchanged, and two
        concurrent cancellations release the spots exactly once.

        Raises:
            NotFoundError: If the booking does not exist
            InvalidBookingTransitionError: If the booking is completed or a no-show
            StorageError: If the release or the status change failed; nothing was committed
        """
        booking, _ = await self._cancel(booking_id, actor, reason, refund_amount)
        return booking

    async def _cancel(
        self,
        booking_id: UUID,
        actor: str,
        reason: Optional[str],
        refund_amount: Optional[int] = None,
        expired_before: Optional[datetime] = None,
    ) -> tuple[Booking, bool]:
        """Cancel and report whether this call performed the transition."""
        booking = await self.get_booking(booking_id)
        observed = BookingStatus(booking.booking_status)

        if observed == BookingStatus.CANCELLED:
            logger.info(
                "Booking already cancelled - returning existing booking",
                extra={"booking_id": str(booking_id), "actor": actor}
            )
            return booking, False

        if expired_before is not None and observed != BookingStatus.PENDING_PAYMENT:
            return booking, False

        if not can_transition(observed, BookingStatus.CANCELLED):
            raise InvalidBookingTransitionError(
                str(booking_id), observed.value, BookingStatus.CANCELLED.value
            )

        instance_id = booking.tour_instance_id
        participant_count = booking.participant_count
        now = utcnow()

        values = {
            "booking_status": BookingStatus.CANCELLED.value,
            "cancelled_at": now,
            "cancelled_by": actor,
            "cancellation_reason": reason,
        }
        if refund_amount is not None:
            values["refund_amount"] = refund_amount

        conditions = [Booking.id == booking_id, Booking.booking_status == observed.value]
        if expired_before is not None:
            conditions.append(Booking.expires_at < expired_before)

        try:
            # Release first; the conditional status update below decides
            # whether this transaction (and so this release) survives.
            await self.controller.release(instance_id, participant_count, session=self.db)
            stmt = (
                update(Booking)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Cancellation aborted - capacity release failed",
                extra={"booking_id": str(booking_id), "actor": actor, "error": repr(e)}
            )
            if not isinstance(e, (StorageError, SQLAlchemyError)):
                raise
            raise StorageError(
                "booking.cancel",
                cause=e,
                detail="Failed to release tour capacity. Cancellation aborted.",
            ) from e

        if result.rowcount == 0:
            await self.db.rollback()
            logger.info(
                "Booking changed concurrently; cancellation not applied",
                extra={"booking_id": str(booking_id), "actor": actor, "observed_status": observed.value}
            )
            return await self.get_booking(booking_id), False

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            emit_reconciliation_alert(ReconciliationAlert(
                kind="cancel_commit_unknown",
                instance_id=str(instance_id),
                granted_count=participant_count,
                booking_id=str(booking_id),
                cause=e,
            ))
            raise StorageError(
                "booking.cancel",
                cause=e,
                detail="Failed to release tour capacity. Cancellation aborted.",
            ) from e

        metrics_collector.record_booking_cancelled(actor)
        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": str(booking_id),
                "actor": actor,
                "reason": reason,
                "spots_released": participant_count,
                "tour_instance_id": str(instance_id),
            }
        )
        return await self.get_booking(booking_id), True

    # Status changes

    async def confirm_payment(self, booking_id: UUID) -> Booking:
        """
        Mark a pending booking as paid and confirmed.

        Raises:
            NotFoundError: If the booking does not exist
            BookingExpiredError: If the payment window has passed
            InvalidBookingTransitionError: If the booking is no longer pending payment
        """
        booking = await self.get_booking(booking_id)
        now = utcnow()

        stmt = (
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.booking_status == BookingStatus.PENDING_PAYMENT.value,
                Booking.expires_at > now,
            )
            .values(
                booking_status=BookingStatus.CONFIRMED.value,
                payment_status=PaymentStatus.PAID.value,
                paid_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            if result.rowcount == 1:
                await self.db.commit()
            else:
                await self.db.rollback()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("booking.confirm_payment", cause=e) from e

        booking = await self.get_booking(booking_id)
        status = BookingStatus(booking.booking_status)

        if result.rowcount == 1:
            logger.info(
                "Booking payment confirmed",
                extra={"booking_id": str(booking_id), "reference": booking.reference}
            )
            return booking

        if status == BookingStatus.CONFIRMED and PaymentStatus(booking.payment_status) != PaymentStatus.PENDING:
            return booking
        if status == BookingStatus.PENDING_PAYMENT:
            logger.warning(
                "Payment confirmation rejected - booking expired",
                extra={"booking_id": str(booking_id)}
            )
            raise BookingExpiredError(str(booking_id))
        raise InvalidBookingTransitionError(str(booking_id), status.value, BookingStatus.CONFIRMED.value)

    async def transition_booking(self, booking_id: UUID, target: BookingStatus, actor: str = ADMIN_ACTOR,
                                 reason: Optional[str] = None, refund_amount: Optional[int] = None) -> Booking:
        """Move a booking along the state machine; cancellation goes through ``cancel_booking``."""
        target = BookingStatus(target)
        if target == BookingStatus.CANCELLED:
            return await self.cancel_booking(booking_id, actor=actor, reason=reason, refund_amount=refund_amount)

        booking = await self.get_booking(booking_id)
        observed = BookingStatus(booking.booking_status)
        if observed == target:
            return booking
        if not can_transition(observed, target):
            raise InvalidBookingTransitionError(str(booking_id), observed.value, target.value)

        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.booking_status == observed.value)
            .values(booking_status=target.value)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            if result.rowcount == 1:
                await self.db.commit()
            else:
                await self.db.rollback()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("booking.transition", cause=e) from e

        booking = await self.get_booking(booking_id)
        if result.rowcount == 0:
            raise InvalidBookingTransitionError(str(booking_id), booking.booking_status, target.value)

        logger.info(
            "Booking status changed",
            extra={
                "booking_id": str(booking_id),
                "from_status": observed.value,
                "to_status": target.value,
                "actor": actor,
            }
        )
        return booking

    async def update_payment_status(self, booking_id: UUID, target: PaymentStatus) -> Booking:
        """Move payment_status along its state machine; ``refunded`` stamps refunded_at."""
        target = PaymentStatus(target)
        booking = await self.get_booking(booking_id)
        observed = PaymentStatus(booking.payment_status)
        if observed == target:
            return booking
        if not can_transition_payment(observed, target):
            raise InvalidBookingTransitionError(str(booking_id), observed.value, target.value, field="payment_status")

        values = {"payment_status": target.value}
        if target == PaymentStatus.REFUNDED:
            values["refunded_at"] = utcnow()
        elif target == PaymentStatus.PAID and booking.paid_at is None:
            values["paid_at"] = utcnow()

        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.payment_status == observed.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            if result.rowcount == 1:
                await self.db.commit()
            else:
                await self.db.rollback()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("booking.update_payment_status", cause=e) from e

        booking = await self.get_booking(booking_id)
        if result.rowcount == 0:
            raise InvalidBookingTransitionError(
                str(booking_id), booking.payment_status, target.value, field="payment_status"
            )
        return booking

    async def apply_admin_update(self, booking_id: UUID, request: UpdateBookingRequest) -> Booking:
        """
        Apply an admin edit restricted to status, payment, refund and notes fields.

        Cancelling through this path records ``cancelled_by = admin``.
        """
        booking = await self.get_booking(booking_id)
        cancelling = request.booking_status == BookingStatus.CANCELLED

        if request.booking_status is not None:
            booking = await self.transition_booking(
                booking_id,
                request.booking_status,
                actor=ADMIN_ACTOR,
                reason=request.cancellation_reason,
                refund_amount=request.refund_amount,
            )

        if request.payment_status is not None:
            booking = await self.update_payment_status(booking_id, request.payment_status)

        values = {}
        if request.special_requests is not None:
            values["special_requests"] = request.special_requests
        if not cancelling:
            if request.cancellation_reason is not None:
                values["cancellation_reason"] = request.cancellation_reason
            if request.refund_amount is not None:
                values["refund_amount"] = request.refund_amount

        if values:
            stmt = (
                update(Booking)
                .where(Booking.id == booking_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            try:
                await self.db.execute(stmt)
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StorageError("booking.admin_update", cause=e) from e
            booking = await self.get_booking(booking_id)

        return booking

    # Expiry

    async def expire_stale_bookings(
        self,
        now: Optional[datetime] = None,
        batch_size: Optional[int] = None,
    ) -> ExpirySweepResult:
        """
        Cancel unpaid bookings whose payment window has closed.

        Each booking goes through the normal cancellation path with actor
        ``system``. A failure on one booking is logged and counted and the
        sweep moves on.
        """
        now = now or utcnow()
        batch_size = batch_size or settings.expiry_sweep_batch_size

        stmt = (
            select(Booking.id)
            .where(
                Booking.booking_status == BookingStatus.PENDING_PAYMENT.value,
                Booking.expires_at < now,
            )
            .order_by(Booking.expires_at)
            .limit(batch_size)
        )
        try:
            result = await self.db.execute(stmt)
            booking_ids = list(result.scalars())
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("booking.expiry_scan", cause=e) from e

        expired = 0
        failed = 0
        for booking_id in booking_ids:
            try:
                _, cancelled = await self._cancel(
                    booking_id,
                    actor=SYSTEM_ACTOR,
                    reason=EXPIRED_REASON,
                    expired_before=now,
                )
            except Exception as e:
                failed += 1
                logger.error(
                    "Failed to expire booking",
                    extra={"booking_id": str(booking_id), "error": repr(e)},
                    exc_info=e,
                )
                continue

            if cancelled:
                expired += 1
                metrics_collector.record_booking_expired()

        sweep = ExpirySweepResult(examined=len(booking_ids), expired=expired, failed=failed)
        if booking_ids:
            logger.info(
                "Booking expiry sweep completed",
                extra={
                    "examined": sweep.examined,
                    "expired": sweep.expired,
                    "failed": sweep.failed,
                    "batch_size": batch_size,
                }
            )
        return sweep
