import asyncio
import logging
from datetime import timedelta
from typing import Optional

import dramatiq
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gensy.config import settings
from gensy.services.lifecycle import generation_lifecycle

logger = logging.getLogger(__name__)

__all__ = ["expire_stale_generations", "sweep_async"]


def run_async(coro):
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def sweep_async(max_age_minutes: int, database_url: Optional[str] = None) -> int:
    # Each run owns its engine; the API engine is bound to another event loop
    engine = create_async_engine(database_url or settings.DATABASE_URL)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_maker() as db:
            expired = await generation_lifecycle.sweep_stale_generations(
                db, older_than=timedelta(minutes=max_age_minutes)
            )
    finally:
        await engine.dispose()

    logger.info("[Sweeper] expired %d generations older than %d minutes", expired, max_age_minutes)
    return expired


@dramatiq.actor(max_retries=3, min_backoff=1000, max_backoff=10000)
def expire_stale_generations(max_age_minutes: Optional[int] = None):
    """Fail and refund generations stuck in pending/processing."""
    if max_age_minutes is None:
        max_age_minutes = settings.GENERATION_TIMEOUT_MINUTES
    return run_async(sweep_async(max_age_minutes))
