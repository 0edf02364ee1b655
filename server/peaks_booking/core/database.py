"""Database configuration and async session management."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from .config import settings


def build_engine(database_url: str):
    """Create an async engine for the given URL.

    SQLite gets a ``NullPool`` so that every session owns its own connection;
    the capacity store relies on separate sessions committing independently.
    """
    is_sqlite = database_url.startswith("sqlite")
    return create_async_engine(
        database_url,
        echo=settings.debug,
        future=True,
        pool_pre_ping=not is_sqlite,
        poolclass=NullPool if is_sqlite else None,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )


def build_session_factory(bind) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine(settings.database_url)

# Create async session factory
async_session_factory = build_session_factory(engine)

# Create declarative base for models
Base = declarative_base()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function that yields database sessions.

    Yields:
        AsyncSession: Database session
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# Alias for FastAPI dependency injection
get_db = get_async_session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the factory used for independent short transactions."""
    return async_session_factory


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
