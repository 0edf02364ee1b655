#!/usr/bin/env python3
"""Setup script for the booking API: migrate the database and load a sample tour."""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from sqlalchemy import func, select  # noqa: E402

from peaks_booking.core.clock import utcnow  # noqa: E402
from peaks_booking.core.database import async_session_factory, close_db  # noqa: E402
from peaks_booking.models import Tour, TourInstance, TourInstanceStatus  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Upgrade the schema to the latest Alembic revision."""
    logger.info("Running database migrations...")
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Create a sample tour with a few weekly instances."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        existing_tours = (await db.execute(select(func.count(Tour.id)))).scalar()
        if existing_tours:
            logger.info("Sample data already exists, skipping...")
            return

        try:
            tour = Tour(
                name="Snowdon Sunrise Photography Hike",
                slug="snowdon-sunrise-photography",
                description="Summit Yr Wyddfa before dawn and shoot the sunrise with a photographer guide",
                base_price_amount=8500,
                price_currency="GBP",
                max_participants=12,
            )
            db.add(tour)
            await db.flush()

            base_date = (utcnow() + timedelta(days=14)).replace(hour=4, minute=30, second=0, microsecond=0)
            for week in range(5):
                start = base_date + timedelta(days=week * 7)
                db.add(TourInstance(
                    tour_id=tour.id,
                    start_datetime=start,
                    end_datetime=start + timedelta(hours=7),
                    capacity_max=12,
                    capacity_booked=0,
                    status=TourInstanceStatus.SCHEDULED.value,
                ))

            await db.commit()
            logger.info("Sample data created successfully!")
        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to create sample data: {e}")
            raise


async def main() -> None:
    logger.info("Starting booking API setup...")

    # Alembic's env runs its own event loop
    await asyncio.to_thread(run_migrations)
    try:
        await create_sample_data()
    finally:
        await close_db()

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn peaks_booking.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
