"""Async SQLAlchemy engine for the relay's read model.

Learn: The relay never writes. It borrows connections from a small pool
to fetch event snapshots, so the pool is sized well below the CRUD API's.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from campusevents.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Build the engine. No connection is opened until the first query."""
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=2,
        max_overflow=8,
        pool_pre_ping=True,
    )
