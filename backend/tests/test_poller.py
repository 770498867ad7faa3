import asyncio

import httpx
import pytest

from gensy.config import settings
from gensy.models.transaction import TransactionKind
from gensy.providers.registry import ProviderRegistry
from gensy.providers.replicate import ReplicateProvider
from gensy.services.credits import credit_service
from gensy.services.generation_events import get_generation_events
from gensy.services.lifecycle import generation_lifecycle
from gensy.services.poller import StatusPoller


@pytest.fixture(autouse=True)
def replicate_token(monkeypatch):
    monkeypatch.setattr(settings, "REPLICATE_API_TOKEN", "r8_test")


def _poller(status_code: int = 200, payload: dict = None, calls: list = None, **kwargs) -> StatusPoller:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, json=payload or {})

    registry = ProviderRegistry(transport=httpx.MockTransport(handler))
    registry.register(ReplicateProvider)
    return StatusPoller(registry=registry, **kwargs)


async def _start(db, credits: int = 5):
    await credit_service.credit(db, "u1", 10, "seed", kind=TransactionKind.PURCHASE)
    generation = await generation_lifecycle.start_generation(
        db, "u1", "video", credits, provider="replicate", external_job_id="pred-1"
    )
    return generation


def test_provider_503_leaves_generation_processing(session_maker) -> None:
    poller = _poller(status_code=503)

    async def scenario():
        async with session_maker() as db:
            generation = await _start(db)
            before = len(await credit_service.history(db, "u1"))

            result = await poller.poll(db, generation.id)

            assert result.status == "processing"
            assert result.error is None
            reloaded = await generation_lifecycle.get_generation(db, generation.id)
            assert reloaded.status == "processing"
            assert len(await credit_service.history(db, "u1")) == before

    asyncio.run(scenario())


def test_provider_failure_fails_and_refunds(session_maker) -> None:
    poller = _poller(payload={"status": "failed", "error": "NSFW content detected"})

    async def scenario():
        async with session_maker() as db:
            generation = await _start(db)
            result = await poller.poll(db, generation.id)

            assert result.status == "failed"
            assert result.error == "NSFW content detected"
            reloaded = await generation_lifecycle.get_generation(db, generation.id)
            assert reloaded.error_code == "REPLICATE_FAILED"
            assert await credit_service.get_balance(db, "u1") == 10

    asyncio.run(scenario())


def test_provider_success_completes_generation(session_maker) -> None:
    poller = _poller(payload={"status": "succeeded", "output": "https://replicate.delivery/out.mp4"}, persist_results=False)

    async def scenario():
        async with session_maker() as db:
            generation = await _start(db)
            result = await poller.poll(db, generation.id)

            assert result.status == "completed"
            assert result.progress == 100
            assert result.result_url == "https://replicate.delivery/out.mp4"
            assert await credit_service.get_balance(db, "u1") == 5

    asyncio.run(scenario())


def test_terminal_generation_is_served_from_cache(session_maker) -> None:
    calls = []
    poller = _poller(payload={"status": "succeeded", "output": "https://replicate.delivery/out.mp4"}, calls=calls, persist_results=False)

    async def scenario():
        async with session_maker() as db:
            generation = await _start(db)
            await poller.poll(db, generation.id)
            again = await poller.poll(db, generation.id)
            assert again.status == "completed"
            assert again.result_url == "https://replicate.delivery/out.mp4"

    asyncio.run(scenario())
    assert len(calls) == 1


def test_in_progress_poll_is_logged(session_maker) -> None:
    poller = _poller(payload={"status": "processing", "progress": 0.5})

    async def scenario():
        async with session_maker() as db:
            generation = await _start(db)
            result = await poller.poll(db, generation.id)
            assert result.status == "processing"
            assert result.progress == 50

            events = await get_generation_events(db, generation.id)
            assert events[-1].event_type == "poll"
            assert events[-1].external_status == "processing"

    asyncio.run(scenario())


def test_generation_without_job_reports_processing(session_maker) -> None:
    calls = []
    poller = _poller(calls=calls)

    async def scenario():
        async with session_maker() as db:
            await credit_service.credit(db, "u1", 10, "seed", kind=TransactionKind.PURCHASE)
            generation = await generation_lifecycle.start_generation(db, "u1", "image", 2)
            result = await poller.poll(db, generation.id)
            assert result.status == "processing"
            assert result.progress == 0

    asyncio.run(scenario())
    assert calls == []


def test_unconfigured_provider_reports_processing(session_maker, monkeypatch) -> None:
    monkeypatch.setattr(settings, "REPLICATE_API_TOKEN", "")
    poller = _poller(payload={"status": "failed"})

    async def scenario():
        async with session_maker() as db:
            generation = await _start(db)
            result = await poller.poll(db, generation.id)
            assert result.status == "processing"
            assert (await generation_lifecycle.get_generation(db, generation.id)).status == "processing"

    asyncio.run(scenario())


class FakeStorage:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def persist_result(self, user_id, generation_type, source_url):
        self.calls.append((user_id, generation_type, source_url))
        if self.fail:
            raise RuntimeError("bucket unavailable")
        return "https://media.gensy.example/users/u1/videos/out.mp4"


def test_completed_output_is_persisted_to_storage(session_maker) -> None:
    storage = FakeStorage()
    poller = _poller(
        payload={"status": "succeeded", "output": "https://replicate.delivery/out.mp4"},
        storage=storage,
        persist_results=True,
    )

    async def scenario():
        async with session_maker() as db:
            generation = await _start(db)
            result = await poller.poll(db, generation.id)
            assert result.result_url == "https://media.gensy.example/users/u1/videos/out.mp4"
            reloaded = await generation_lifecycle.get_generation(db, generation.id)
            assert reloaded.metadata_["providerUrl"] == "https://replicate.delivery/out.mp4"

    asyncio.run(scenario())
    assert storage.calls == [("u1", "video", "https://replicate.delivery/out.mp4")]


def test_storage_failure_falls_back_to_provider_url(session_maker) -> None:
    poller = _poller(
        payload={"status": "succeeded", "output": "https://replicate.delivery/out.mp4"},
        storage=FakeStorage(fail=True),
        persist_results=True,
    )

    async def scenario():
        async with session_maker() as db:
            generation = await _start(db)
            result = await poller.poll(db, generation.id)
            assert result.status == "completed"
            assert result.result_url == "https://replicate.delivery/out.mp4"

    asyncio.run(scenario())


def test_null_provider_body_leaves_generation_processing(session_maker) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"null", headers={"content-type": "application/json"})

    registry = ProviderRegistry(transport=httpx.MockTransport(handler))
    registry.register(ReplicateProvider)
    poller = StatusPoller(registry=registry)

    async def scenario():
        async with session_maker() as db:
            generation = await _start(db)
            result = await poller.poll(db, generation.id)

            assert result.status == "processing"
            reloaded = await generation_lifecycle.get_generation(db, generation.id)
            assert reloaded.status == "processing"
            assert await credit_service.get_balance(db, "u1") == 5

    asyncio.run(scenario())
