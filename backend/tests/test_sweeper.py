import asyncio
from datetime import timedelta

from sqlalchemy import update

from gensy.config import settings
from gensy.models.base import utcnow
from gensy.models.generation import Generation
from gensy.models.transaction import TransactionKind
from gensy.services.credits import credit_service
from gensy.services.lifecycle import generation_lifecycle
from gensy.workers.sweeper import expire_stale_generations, sweep_async


async def _stale_generation(session_maker, age: timedelta):
    async with session_maker() as db:
        await credit_service.credit(db, "u1", 10, "seed", kind=TransactionKind.PURCHASE)
        generation = await generation_lifecycle.start_generation(db, "u1", "video", 5)
        await db.execute(
            update(Generation).where(Generation.id == generation.id).values(created_at=utcnow() - age)
        )
        await db.commit()
        return generation.id


async def _state(session_maker, generation_id):
    async with session_maker() as db:
        generation = await generation_lifecycle.get_generation(db, generation_id)
        return generation.status, generation.error_code, await credit_service.get_balance(db, "u1")


def test_sweep_async_expires_and_refunds(session_maker, db_url) -> None:
    generation_id = asyncio.run(_stale_generation(session_maker, timedelta(hours=2)))

    assert asyncio.run(sweep_async(60, database_url=db_url)) == 1
    assert asyncio.run(_state(session_maker, generation_id)) == ("failed", "TIMEOUT", 10)

    # A second sweep finds nothing left to expire
    assert asyncio.run(sweep_async(60, database_url=db_url)) == 0


def test_actor_runs_sweep_with_configured_timeout(session_maker, db_url, monkeypatch) -> None:
    monkeypatch.setattr(settings, "DATABASE_URL", db_url)
    monkeypatch.setattr(settings, "GENERATION_TIMEOUT_MINUTES", 30)
    generation_id = asyncio.run(_stale_generation(session_maker, timedelta(minutes=45)))

    assert expire_stale_generations() == 1
    assert asyncio.run(_state(session_maker, generation_id))[0] == "failed"


def test_recent_generation_survives_sweep(session_maker, db_url, monkeypatch) -> None:
    monkeypatch.setattr(settings, "DATABASE_URL", db_url)
    generation_id = asyncio.run(_stale_generation(session_maker, timedelta(minutes=5)))

    assert expire_stale_generations(60) == 0
    assert asyncio.run(_state(session_maker, generation_id)) == ("processing", None, 5)


def test_actor_is_enqueued_on_stub_broker() -> None:
    broker = expire_stale_generations.broker
    message = expire_stale_generations.send(90)
    try:
        assert message.actor_name == "expire_stale_generations"
        assert message.args == (90,)
        assert broker.queues[message.queue_name].qsize() == 1
    finally:
        broker.flush_all()
