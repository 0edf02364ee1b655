"""Unit tests for tour and tour instance services."""

from datetime import timedelta
from uuid import uuid4

import pytest

from peaks_booking.core.clock import utcnow
from peaks_booking.core.exceptions import (
    CapacityResizeError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from peaks_booking.schemas.common import Money
from peaks_booking.schemas.tour import CreateTourRequest
from peaks_booking.schemas.tour_instance import CreateTourInstanceRequest, UpdateTourInstanceRequest
from peaks_booking.services.tour_instance_service import TourInstanceService
from peaks_booking.services.tour_service import TourService


def tour_request(slug="tryfan-north-ridge", price=6500):
    return CreateTourRequest(
        name="Tryfan North Ridge",
        slug=slug,
        description="Grade 1 scramble with a summit photo stop",
        base_price=Money(amount=price, currency="GBP"),
    )


def instance_request(days_ahead=7, **kwargs):
    start = utcnow() + timedelta(days=days_ahead)
    return CreateTourInstanceRequest(start_datetime=start, end_datetime=start + timedelta(hours=4), **kwargs)


@pytest.mark.asyncio
async def test_create_tour_rejects_duplicate_slug(test_session):
    service = TourService(test_session)
    tour = await service.create_tour(tour_request())

    assert tour.status == "active"
    with pytest.raises(ConflictError):
        await service.create_tour(tour_request())


@pytest.mark.asyncio
async def test_create_instance_for_unknown_tour(test_session):
    with pytest.raises(NotFoundError):
        await TourInstanceService(test_session).create_instance(uuid4(), instance_request())


@pytest.mark.asyncio
async def test_listing_only_shows_bookable_upcoming_instances(test_session, controller):
    tour = await TourService(test_session).create_tour(tour_request())
    tour_id = tour.id
    service = TourInstanceService(test_session, controller)

    later = await service.create_instance(tour_id, instance_request(days_ahead=20))
    sooner = await service.create_instance(tour_id, instance_request(days_ahead=5, price_override_amount=5500))
    sold_out = await service.create_instance(tour_id, instance_request(days_ahead=8, capacity_max=2))
    cancelled = await service.create_instance(tour_id, instance_request(days_ahead=9))
    past = await service.create_instance(tour_id, instance_request(days_ahead=-3))
    later_id, sooner_id, sold_out_id, cancelled_id, past_id = (
        later.id, sooner.id, sold_out.id, cancelled.id, past.id
    )

    await controller.try_reserve(sold_out_id, 2)
    await service.update_instance(cancelled_id, UpdateTourInstanceRequest(status="cancelled"))

    listed_tour, instances = await service.list_available_instances("tryfan-north-ridge")

    assert listed_tour.id == tour_id
    assert [i.id for i in instances] == [sooner_id, later_id]
    assert past_id not in [i.id for i in instances]


@pytest.mark.asyncio
async def test_listing_unknown_slug(test_session):
    with pytest.raises(NotFoundError):
        await TourInstanceService(test_session).list_available_instances("nowhere")


@pytest.mark.asyncio
async def test_update_rejects_inverted_window(test_session, make_instance):
    instance_id = await make_instance()
    service = TourInstanceService(test_session)
    instance = await service.get_instance(instance_id)

    with pytest.raises(ValidationError):
        await service.update_instance(
            instance_id,
            UpdateTourInstanceRequest(end_datetime=instance.start_datetime - timedelta(hours=1)),
        )


@pytest.mark.asyncio
async def test_update_requires_some_field(test_session, make_instance):
    instance_id = await make_instance()

    with pytest.raises(ValidationError):
        await TourInstanceService(test_session).update_instance(instance_id, UpdateTourInstanceRequest())


@pytest.mark.asyncio
async def test_capacity_edit_goes_through_controller(test_session, controller, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=10, capacity_booked=7)
    service = TourInstanceService(test_session, controller)

    with pytest.raises(CapacityResizeError):
        await service.update_instance(instance_id, UpdateTourInstanceRequest(capacity_max=6))

    updated = await service.update_instance(instance_id, UpdateTourInstanceRequest(capacity_max=7))

    assert updated.capacity_max == 7
    assert updated.status == "full"
    assert (await read_instance(instance_id)).capacity_booked == 7


@pytest.mark.asyncio
async def test_delete_unknown_instance(test_session):
    with pytest.raises(NotFoundError):
        await TourInstanceService(test_session).delete_instance(uuid4())
