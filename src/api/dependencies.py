"""FastAPI dependency injection helpers."""

from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database import async_session_factory
from src.infrastructure.events import EventPublisher
from src.infrastructure.locks import LockFactory
from src.infrastructure.redis_client import get_lock_factory, get_publisher


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_event_publisher() -> EventPublisher:
    return await get_publisher()


async def get_locks() -> LockFactory:
    return await get_lock_factory()
