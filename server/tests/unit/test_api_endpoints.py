"""Unit tests for API endpoints."""

from datetime import timedelta

import pytest

from conftest import make_token
from peaks_booking.core.clock import utcnow
from peaks_booking.core.dependencies import get_reservation_controller
from peaks_booking.services.capacity import ReservationController, SqlCapacityStore


class AlwaysLosingStore(SqlCapacityStore):
    async def conditional_increment(self, instance_id, expected_current, delta, ceiling):
        return False


def booking_body(instance_id, participants=2, email="hiker@example.com", **overrides):
    body = {
        "tour_instance_id": str(instance_id),
        "participant_count": participants,
        "lead_participant_name": "Morgan Hughes",
        "lead_participant_email": email,
        "lead_participant_phone": "+44 7700 900123",
    }
    body.update(overrides)
    return body


def customer_headers(email="hiker@example.com", user_id="customer-1"):
    return {"Authorization": f"Bearer {make_token(user_id, email=email)}"}


async def create_booking(client, instance_id, participants=2, email="hiker@example.com"):
    response = await client.post("/v1/bookings", json=booking_body(instance_id, participants, email=email))
    assert response.status_code == 201
    return response.json()["booking"]


@pytest.mark.asyncio
async def test_health_endpoint(test_client):
    response = await test_client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_ready_endpoint(test_client):
    response = await test_client.get("/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["database"] is True


@pytest.mark.asyncio
async def test_metrics_endpoint(test_client, make_instance):
    instance_id = await make_instance()
    await create_booking(test_client, instance_id)

    response = await test_client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "bookings_created_total" in response.text
    assert "capacity_reserved_seats_total" in response.text


@pytest.mark.asyncio
async def test_request_id_is_echoed(test_client):
    response = await test_client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_create_booking(test_client, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=6, base_price=7500)

    response = await test_client.post("/v1/bookings", json=booking_body(instance_id, 2))

    assert response.status_code == 201
    data = response.json()
    assert data["message"] == "Booking created successfully"
    assert data["booking"]["reference"].startswith("PP-")
    assert data["booking"]["total_amount"] == 15000
    assert data["booking"]["currency"] == "GBP"
    assert (await read_instance(instance_id)).capacity_booked == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"participant_count": 0},
        {"participant_count": 51},
        {"lead_participant_email": "not-an-email"},
        {"lead_participant_name": "   "},
    ],
)
async def test_create_booking_validation(test_client, make_instance, read_instance, overrides):
    instance_id = await make_instance()

    response = await test_client.post("/v1/bookings", json=booking_body(instance_id, **overrides))

    assert response.status_code == 400
    data = response.json()
    assert data["code"] == "VALIDATION_FAILED"
    assert data["violations"]
    assert response.headers["content-type"] == "application/problem+json"
    assert (await read_instance(instance_id)).capacity_booked == 0


@pytest.mark.asyncio
async def test_create_booking_missing_field(test_client, make_instance):
    instance_id = await make_instance()
    body = booking_body(instance_id)
    del body["lead_participant_phone"]

    response = await test_client.post("/v1/bookings", json=body)

    assert response.status_code == 400
    paths = [v["path"] for v in response.json()["violations"]]
    assert "lead_participant_phone" in paths


@pytest.mark.asyncio
async def test_create_booking_unknown_instance(test_client):
    response = await test_client.post(
        "/v1/bookings",
        json=booking_body("7d6c8a47-93b8-4c61-9fd4-0d7f8f1f2c11"),
    )

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_create_booking_malformed_instance_id(test_client):
    response = await test_client.post("/v1/bookings", json=booking_body("not-a-uuid"))

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_booking_insufficient_capacity(test_client, make_instance):
    instance_id = await make_instance(capacity_max=5, capacity_booked=3)

    response = await test_client.post("/v1/bookings", json=booking_body(instance_id, 3))

    assert response.status_code == 409
    data = response.json()
    assert data["code"] == "INSUFFICIENT_CAPACITY"
    assert data["detail"] == "Only 2 spots available"
    assert data["available"] == 2
    assert data["retryable"] is False


@pytest.mark.asyncio
async def test_create_booking_sold_out(test_client, make_instance):
    instance_id = await make_instance(capacity_max=2, capacity_booked=2, status="full")

    response = await test_client.post("/v1/bookings", json=booking_body(instance_id, 1))

    assert response.status_code == 409
    data = response.json()
    assert data["code"] == "SOLD_OUT"
    assert data["detail"] == "This tour is sold out"


@pytest.mark.asyncio
async def test_create_booking_contention_exhausted(test_app, test_client, session_factory, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=5)
    test_app.dependency_overrides[get_reservation_controller] = lambda: ReservationController(
        AlwaysLosingStore(session_factory), max_attempts=1
    )

    response = await test_client.post("/v1/bookings", json=booking_body(instance_id, 2))

    assert response.status_code == 409
    data = response.json()
    assert data["code"] == "CAPACITY_CONTENTION"
    assert data["retryable"] is True
    assert data["attempts"] == 1
    assert (await read_instance(instance_id)).capacity_booked == 0


@pytest.mark.asyncio
async def test_create_booking_cancelled_instance(test_client, make_instance):
    instance_id = await make_instance(status="cancelled")

    response = await test_client.post("/v1/bookings", json=booking_body(instance_id, 1))

    assert response.status_code == 400
    assert response.json()["code"] == "INSTANCE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_get_booking_requires_owner(test_client, make_instance):
    instance_id = await make_instance()
    booking = await create_booking(test_client, instance_id, email="owner@example.com")

    anonymous = await test_client.get(f"/v1/bookings/{booking['id']}")
    stranger = await test_client.get(
        f"/v1/bookings/{booking['id']}",
        headers=customer_headers(email="stranger@example.com", user_id="someone-else"),
    )
    owner = await test_client.get(f"/v1/bookings/{booking['id']}", headers=customer_headers(email="owner@example.com"))

    assert anonymous.status_code == 401
    assert stranger.status_code == 403
    assert owner.status_code == 200
    data = owner.json()
    assert data["reference"] == booking["reference"]
    assert data["booking_status"] == "pending_payment"
    assert data["unit_price"] == {"amount": 5000, "currency": "GBP"}


@pytest.mark.asyncio
async def test_admin_can_read_any_booking(test_client, make_instance, admin_headers):
    instance_id = await make_instance()
    booking = await create_booking(test_client, instance_id)

    response = await test_client.get(f"/v1/bookings/{booking['id']}", headers=admin_headers)

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_confirm_payment_endpoint(test_client, make_instance):
    instance_id = await make_instance()
    booking = await create_booking(test_client, instance_id)

    response = await test_client.post(
        f"/v1/bookings/{booking['id']}/confirm-payment",
        headers=customer_headers(),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["booking_status"] == "confirmed"
    assert data["payment_status"] == "paid"


@pytest.mark.asyncio
async def test_confirm_payment_after_expiry(test_client, make_instance, expire_booking):
    instance_id = await make_instance()
    booking = await create_booking(test_client, instance_id)
    await expire_booking(booking["id"])

    response = await test_client.post(
        f"/v1/bookings/{booking['id']}/confirm-payment",
        headers=customer_headers(),
    )

    assert response.status_code == 409
    assert response.json()["code"] == "BOOKING_EXPIRED"


@pytest.mark.asyncio
async def test_customer_cancel_endpoint(test_client, make_instance, read_instance):
    instance_id = await make_instance(capacity_max=4)
    booking = await create_booking(test_client, instance_id, participants=3)

    response = await test_client.post(
        f"/v1/bookings/{booking['id']}/cancel",
        json={"reason": "Change of plans"},
        headers=customer_headers(user_id="customer-7"),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["booking_status"] == "cancelled"
    assert data["cancelled_by"] == "customer-7"
    assert data["cancellation_reason"] == "Change of plans"
    assert (await read_instance(instance_id)).capacity_booked == 0


@pytest.mark.asyncio
async def test_admin_endpoints_require_admin_role(test_client, make_instance):
    instance_id = await make_instance()
    booking = await create_booking(test_client, instance_id)
    path = f"/v1/admin/bookings/{booking['id']}"

    missing = await test_client.patch(path, json={"booking_status": "cancelled"})
    customer = await test_client.patch(path, json={"booking_status": "cancelled"}, headers=customer_headers())
    bad_token = await test_client.patch(
        path,
        json={"booking_status": "cancelled"},
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert missing.status_code == 401
    assert missing.headers["WWW-Authenticate"] == "Bearer"
    assert customer.status_code == 403
    assert bad_token.status_code == 401


@pytest.mark.asyncio
async def test_admin_cancel_releases_capacity(test_client, make_instance, read_instance, admin_headers):
    instance_id = await make_instance(capacity_max=2)
    booking = await create_booking(test_client, instance_id, participants=2)

    sold_out = await test_client.post("/v1/bookings", json=booking_body(instance_id, 1, email="late@example.com"))
    assert sold_out.status_code == 409
    assert sold_out.json()["available"] == 0

    response = await test_client.patch(
        f"/v1/admin/bookings/{booking['id']}",
        json={"booking_status": "cancelled", "cancellation_reason": "Guide unavailable"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["booking_status"] == "cancelled"
    assert data["cancelled_by"] == "admin"
    assert data["cancellation_reason"] == "Guide unavailable"
    assert (await read_instance(instance_id)).capacity_booked == 0

    again = await test_client.patch(
        f"/v1/admin/bookings/{booking['id']}",
        json={"booking_status": "cancelled"},
        headers=admin_headers,
    )
    assert again.status_code == 200
    assert (await read_instance(instance_id)).capacity_booked == 0

    retried = await test_client.post("/v1/bookings", json=booking_body(instance_id, 1, email="late@example.com"))
    assert retried.status_code == 201


@pytest.mark.asyncio
async def test_admin_invalid_transition(test_client, make_instance, admin_headers):
    instance_id = await make_instance()
    booking = await create_booking(test_client, instance_id)

    response = await test_client.patch(
        f"/v1/admin/bookings/{booking['id']}",
        json={"booking_status": "completed"},
        headers=admin_headers,
    )

    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_admin_rejects_unknown_fields(test_client, make_instance, admin_headers):
    instance_id = await make_instance()
    booking = await create_booking(test_client, instance_id)

    response = await test_client.patch(
        f"/v1/admin/bookings/{booking['id']}",
        json={"total_amount": 1},
        headers=admin_headers,
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_admin_expiry_sweep(test_client, make_instance, read_instance, expire_booking, admin_headers):
    instance_id = await make_instance(capacity_max=6)
    stale = await create_booking(test_client, instance_id, participants=2, email="a@example.com")
    await create_booking(test_client, instance_id, participants=1, email="b@example.com")
    await expire_booking(stale["id"])

    response = await test_client.post("/v1/admin/bookings/expire", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"examined": 1, "expired": 1, "failed": 0}
    assert (await read_instance(instance_id)).capacity_booked == 1


@pytest.mark.asyncio
async def test_tour_and_instance_admin_flow(test_client, admin_headers):
    tour = await test_client.post(
        "/v1/tours",
        json={
            "name": "Glyderau Golden Hour",
            "slug": "glyderau-golden-hour",
            "description": "Ridge scramble timed for sunset light",
            "base_price": {"amount": 8900, "currency": "GBP"},
        },
        headers=admin_headers,
    )
    assert tour.status_code == 201
    tour_id = tour.json()["id"]
    assert tour.json()["max_participants"] == 12

    duplicate = await test_client.post(
        "/v1/tours",
        json={
            "name": "Another",
            "slug": "glyderau-golden-hour",
            "description": "Same slug",
            "base_price": {"amount": 100, "currency": "GBP"},
        },
        headers=admin_headers,
    )
    assert duplicate.status_code == 409

    start = utcnow() + timedelta(days=10)
    created = await test_client.post(
        f"/v1/admin/tours/{tour_id}/instances",
        json={
            "start_datetime": start.isoformat(),
            "end_datetime": (start + timedelta(hours=5)).isoformat(),
        },
        headers=admin_headers,
    )
    assert created.status_code == 201
    instance = created.json()
    assert instance["capacity_max"] == 12
    assert instance["available_spots"] == 12
    assert instance["status"] == "scheduled"
    assert instance["price"] == {"amount": 8900, "currency": "GBP"}

    listing = await test_client.get("/v1/tours/glyderau-golden-hour/instances")
    assert listing.status_code == 200
    assert listing.json()["tour"]["name"] == "Glyderau Golden Hour"
    assert [i["id"] for i in listing.json()["instances"]] == [instance["id"]]

    booked = await test_client.post("/v1/bookings", json=booking_body(instance["id"], 5))
    assert booked.status_code == 201

    shrink = await test_client.patch(
        f"/v1/admin/instances/{instance['id']}",
        json={"capacity_max": 4},
        headers=admin_headers,
    )
    assert shrink.status_code == 409
    assert shrink.json()["code"] == "CAPACITY_BELOW_BOOKED"

    resized = await test_client.patch(
        f"/v1/admin/instances/{instance['id']}",
        json={"capacity_max": 5, "price_override_amount": 7900},
        headers=admin_headers,
    )
    assert resized.status_code == 200
    assert resized.json()["status"] == "full"
    assert resized.json()["available_spots"] == 0
    assert resized.json()["price"]["amount"] == 7900

    # Full instances drop out of the public listing
    listing = await test_client.get("/v1/tours/glyderau-golden-hour/instances")
    assert listing.json()["instances"] == []

    delete = await test_client.delete(f"/v1/admin/instances/{instance['id']}", headers=admin_headers)
    assert delete.status_code == 409


@pytest.mark.asyncio
async def test_instance_status_edits(test_client, make_instance, admin_headers):
    instance_id = await make_instance()

    reopen = await test_client.patch(
        f"/v1/admin/instances/{instance_id}",
        json={"status": "full"},
        headers=admin_headers,
    )
    assert reopen.status_code == 400

    cancelled = await test_client.patch(
        f"/v1/admin/instances/{instance_id}",
        json={"status": "cancelled", "cancellation_reason": "Storm warning"},
        headers=admin_headers,
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    booking = await test_client.post("/v1/bookings", json=booking_body(instance_id, 1))
    assert booking.status_code == 400
    assert booking.json()["code"] == "INSTANCE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_delete_unbooked_instance(test_client, make_instance, admin_headers):
    instance_id = await make_instance()

    response = await test_client.delete(f"/v1/admin/instances/{instance_id}", headers=admin_headers)
    assert response.status_code == 204

    missing = await test_client.delete(f"/v1/admin/instances/{instance_id}", headers=admin_headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_unknown_tour_listing(test_client):
    response = await test_client.get("/v1/tours/no-such-tour/instances")

    assert response.status_code == 404
