"""Async engine and session factory."""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from listing_watch.config import settings
from listing_watch.db.models import Base


def create_session_factory(
    database_url: Optional[str] = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build the engine and a session maker that keeps objects usable after commit."""
    engine = create_async_engine(database_url or settings.database_url, echo=settings.debug)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
