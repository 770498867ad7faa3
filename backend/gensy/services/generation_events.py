"""Append-only audit trail of what happened to each generation."""

import uuid
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gensy.models.generation_event import GenerationEvent


class EventType(str, Enum):
    CREATED = "created"
    SENT_TO_PROVIDER = "sent_to_provider"
    POLL = "poll"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


async def log_event(
    db: AsyncSession,
    generation_id: uuid.UUID,
    event_type: EventType,
    external_status: Optional[str] = None,
    error_message: Optional[str] = None,
    **details,
) -> GenerationEvent:
    """Stage one event in the caller's transaction; None-valued details are dropped."""
    event = GenerationEvent(
        generation_id=generation_id,
        event_type=EventType(event_type).value,
        external_status=external_status,
        response_data={k: v for k, v in details.items() if v is not None} or None,
        error_message=error_message,
    )
    db.add(event)
    await db.flush()
    return event


async def get_generation_events(db: AsyncSession, generation_id: uuid.UUID) -> list[GenerationEvent]:
    result = await db.execute(
        select(GenerationEvent)
        .where(GenerationEvent.generation_id == generation_id)
        .order_by(GenerationEvent.created_at.asc())
    )
    return list(result.scalars().all())


async def log_created(db, generation_id, credits_used, provider=None, model=None):
    return await log_event(
        db, generation_id, EventType.CREATED, credits_used=credits_used, provider=provider, model=model
    )


async def log_sent_to_provider(db, generation_id, external_job_id, provider, raw_response=None):
    return await log_event(
        db,
        generation_id,
        EventType.SENT_TO_PROVIDER,
        external_job_id=external_job_id,
        provider=provider,
        raw=raw_response,
    )


async def log_poll(db, generation_id, external_status, progress=None, raw_response=None):
    return await log_event(
        db, generation_id, EventType.POLL, external_status=external_status, progress=progress, raw=raw_response
    )


async def log_completed(db, generation_id, result_url, raw_response=None):
    return await log_event(
        db, generation_id, EventType.COMPLETED, external_status="completed", result_url=result_url, raw=raw_response
    )


async def log_failed(
    db,
    generation_id,
    error_code,
    error_message,
    event_type=EventType.FAILED,
    refunded=0,
    raw_response=None,
):
    return await log_event(
        db,
        generation_id,
        event_type,
        external_status="failed",
        error_message=error_message,
        error_code=error_code,
        refunded=refunded,
        raw=raw_response,
    )
