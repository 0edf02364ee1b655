"""Unit tests for the capacity reservation controller."""

from uuid import uuid4

import pytest

from peaks_booking.core.exceptions import (
    CapacityError,
    CapacityResizeError,
    ContentionError,
    NotFoundError,
    StorageError,
    TourInstanceUnavailableError,
    ValidationError,
)
from peaks_booking.core.observability import REGISTRY
from peaks_booking.services.capacity import ReservationController, SqlCapacityStore


class AlwaysLosingStore(SqlCapacityStore):
    """Store whose conditional writes always lose to an imaginary competitor."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.writes = 0

    async def conditional_increment(self, instance_id, expected_current, delta, ceiling):
        self.writes += 1
        return False


class BrokenStore(SqlCapacityStore):
    async def read(self, instance_id):
        raise StorageError("capacity.read")


@pytest.mark.asyncio
async def test_reserve_grants_and_increments(controller, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=10)

    reservation = await controller.try_reserve(instance_id, 3)

    assert reservation.instance_id == instance_id
    assert reservation.granted_count == 3
    instance = await read_instance(instance_id)
    assert instance.capacity_booked == 3
    assert instance.status == "scheduled"


@pytest.mark.asyncio
async def test_reserve_to_ceiling_marks_instance_full(controller, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=4)

    await controller.try_reserve(instance_id, 4)

    instance = await read_instance(instance_id)
    assert instance.capacity_booked == 4
    assert instance.status == "full"


@pytest.mark.asyncio
async def test_insufficient_capacity_reports_spots_left(controller, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=5, capacity_booked=3)

    with pytest.raises(CapacityError) as exc_info:
        await controller.try_reserve(instance_id, 3)

    assert exc_info.value.available == 2
    assert exc_info.value.problem_details["code"] == "INSUFFICIENT_CAPACITY"
    assert exc_info.value.problem_details["detail"] == "Only 2 spots available"
    assert (await read_instance(instance_id)).capacity_booked == 3


@pytest.mark.asyncio
async def test_sold_out_instance(controller, make_instance):
    instance_id = await make_instance(capacity_max=2, capacity_booked=2, status="full")

    with pytest.raises(CapacityError) as exc_info:
        await controller.try_reserve(instance_id, 1)

    assert exc_info.value.available == 0
    assert exc_info.value.problem_details["code"] == "SOLD_OUT"
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_zero_count_is_rejected_before_storage(session_factory):
    store = BrokenStore(session_factory)
    controller = ReservationController(store)

    with pytest.raises(ValidationError):
        await controller.try_reserve(uuid4(), 0)


@pytest.mark.asyncio
@pytest.mark.parametrize("max_attempts", [0, -1])
async def test_retry_budget_must_allow_one_attempt(session_factory, max_attempts):
    with pytest.raises(ValueError):
        ReservationController(SqlCapacityStore(session_factory), max_attempts=max_attempts)


@pytest.mark.asyncio
async def test_unknown_instance(controller):
    with pytest.raises(NotFoundError):
        await controller.try_reserve(uuid4(), 1)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["cancelled", "completed"])
async def test_unbookable_instance(controller, make_instance, read_instance, status):
    instance_id = await make_instance(capacity_max=10, status=status)

    with pytest.raises(TourInstanceUnavailableError):
        await controller.try_reserve(instance_id, 1)

    assert (await read_instance(instance_id)).capacity_booked == 0


@pytest.mark.asyncio
async def test_contention_exhausts_retry_budget(session_factory, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=10)
    store = AlwaysLosingStore(session_factory)
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    controller = ReservationController(store, max_attempts=4, backoff_seconds=0.01, sleep=fake_sleep)
    before = REGISTRY.get_sample_value("reservation_contention_exhausted_total") or 0

    with pytest.raises(ContentionError) as exc_info:
        await controller.try_reserve(instance_id, 1)

    assert store.writes == 4
    assert len(sleeps) == 3
    assert all(0 <= delay <= controller.backoff_max_seconds for delay in sleeps)
    assert exc_info.value.problem_details["retryable"] is True
    assert exc_info.value.problem_details["code"] == "CAPACITY_CONTENTION"
    assert (await read_instance(instance_id)).capacity_booked == 0
    assert REGISTRY.get_sample_value("reservation_contention_exhausted_total") == before + 1


@pytest.mark.asyncio
async def test_stale_expected_value_is_rejected(session_factory, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=10, capacity_booked=4)
    store = SqlCapacityStore(session_factory)

    assert await store.conditional_increment(instance_id, expected_current=3, delta=1, ceiling=10) is False
    assert await store.conditional_increment(instance_id, expected_current=4, delta=1, ceiling=10) is True
    assert (await read_instance(instance_id)).capacity_booked == 5


@pytest.mark.asyncio
async def test_release_clamps_at_zero_and_reopens(controller, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=3, capacity_booked=3, status="full")

    await controller.release(instance_id, 2)
    instance = await read_instance(instance_id)
    assert instance.capacity_booked == 1
    assert instance.status == "scheduled"

    await controller.release(instance_id, 5)
    assert (await read_instance(instance_id)).capacity_booked == 0


@pytest.mark.asyncio
async def test_release_in_caller_transaction_is_undone_by_rollback(controller, make_instance, read_instance, test_session):
    instance_id = await make_instance(capacity_max=5, capacity_booked=2)

    await controller.release(instance_id, 2, session=test_session)
    await test_session.rollback()

    assert (await read_instance(instance_id)).capacity_booked == 2


@pytest.mark.asyncio
async def test_resize_respects_booked_count(controller, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=10, capacity_booked=6)

    with pytest.raises(CapacityResizeError):
        await controller.resize(instance_id, 5)

    snapshot = await controller.resize(instance_id, 6)
    assert snapshot.capacity_max == 6
    instance = await read_instance(instance_id)
    assert instance.status == "full"

    await controller.resize(instance_id, 8)
    instance = await read_instance(instance_id)
    assert instance.capacity_max == 8
    assert instance.status == "scheduled"
