"""Test configuration and fixtures."""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BACKGROUND_WORKERS_ENABLED", "false")

from datetime import timedelta  # noqa: E402
from uuid import UUID  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select, update  # noqa: E402

from peaks_booking.core.clock import utcnow  # noqa: E402
from peaks_booking.core.config import settings  # noqa: E402
from peaks_booking.core.database import Base, build_engine, build_session_factory, get_db, get_session_factory  # noqa: E402
from peaks_booking.models import *  # noqa: E402,F403 - Import all models
from peaks_booking.models import Booking, Tour, TourInstance  # noqa: E402
from peaks_booking.schemas.booking import CreateBookingRequest  # noqa: E402
from peaks_booking.services.capacity import ReservationController  # noqa: E402


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """
    Create a test database engine on a temporary SQLite file.

    A file (not ``:memory:``) plus NullPool gives every session its own
    connection, so concurrent callers really do race on the counter.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def controller(session_factory):
    """Reservation controller without backoff delays."""
    return ReservationController.for_sessions(
        session_factory,
        backoff_seconds=0,
        backoff_max_seconds=0,
    )


@pytest.fixture
def make_instance(session_factory):
    """Factory creating a tour and one instance; returns the instance ID."""
    counter = {"n": 0}

    async def _make(
        capacity_max: int = 10,
        capacity_booked: int = 0,
        base_price: int = 5000,
        price_override: int | None = None,
        status: str = "scheduled",
        days_ahead: int = 14,
    ) -> UUID:
        counter["n"] += 1
        start = utcnow() + timedelta(days=days_ahead)
        async with session_factory() as session:
            tour = Tour(
                name=f"Snowdon Sunrise {counter['n']}",
                slug=f"snowdon-sunrise-{counter['n']}",
                description="Dawn hike and landscape photography",
                base_price_amount=base_price,
                price_currency="GBP",
                max_participants=capacity_max or 1,
            )
            session.add(tour)
            await session.flush()
            instance = TourInstance(
                tour_id=tour.id,
                start_datetime=start,
                end_datetime=start + timedelta(hours=6),
                capacity_max=capacity_max,
                capacity_booked=capacity_booked,
                status=status,
                price_override_amount=price_override,
            )
            session.add(instance)
            await session.commit()
            return instance.id

    return _make


@pytest.fixture
def read_instance(session_factory):
    """Read an instance's current row in a fresh session."""
    async def _read(instance_id: UUID) -> TourInstance:
        async with session_factory() as session:
            result = await session.execute(select(TourInstance).where(TourInstance.id == instance_id))
            return result.scalar_one()

    return _read


@pytest.fixture
def expire_booking(session_factory):
    """Move a booking's payment deadline into the past."""
    async def _expire(booking_id: UUID | str, minutes_ago: int = 5) -> None:
        async with session_factory() as session:
            await session.execute(
                update(Booking)
                .where(Booking.id == UUID(str(booking_id)))
                .values(expires_at=utcnow() - timedelta(minutes=minutes_ago))
            )
            await session.commit()

    return _expire


def booking_request(instance_id: UUID, participants: int = 1, email: str = "hiker@example.com") -> CreateBookingRequest:
    return CreateBookingRequest(
        tour_instance_id=str(instance_id),
        participant_count=participants,
        lead_participant_name="Morgan Hughes",
        lead_participant_email=email,
        lead_participant_phone="+44 7700 900123",
    )


def make_token(user_id: str = "customer-1", roles: list[str] | None = None, email: str | None = None) -> str:
    payload = {"sub": user_id, "roles": roles or []}
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.bearer_token_secret, algorithm="HS256")


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token('admin-1', roles=['admin'])}"}


@pytest_asyncio.fixture(scope="function")
async def test_app(session_factory):
    """Create the FastAPI application wired to the test database."""
    from peaks_booking.main import create_app

    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
