import asyncio

import httpx
import pytest
from google.oauth2.credentials import Credentials

from gensy.config import settings
from gensy.errors import ProviderFatalError, ProviderTransientError
from gensy.providers.base import JobState
from gensy.providers.bfl import BFLProvider
from gensy.providers.google_veo import GoogleVeoProvider
from gensy.providers.minimax import MiniMaxProvider
from gensy.providers.registry import ProviderRegistry, provider_registry
from gensy.providers.replicate import ReplicateProvider


def _transport(status_code: int = 200, payload: dict = None, seen: list = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload or {})

    return httpx.MockTransport(handler)


def test_replicate_succeeded_uses_first_output() -> None:
    seen = []
    provider = ReplicateProvider(
        "r8_token",
        transport=_transport(payload={"status": "succeeded", "output": ["https://r.example/1.png", "https://r.example/2.png"]}, seen=seen),
    )
    job = asyncio.run(provider.get_status("pred-1"))

    assert job.state == JobState.COMPLETED
    assert job.output_url == "https://r.example/1.png"
    assert str(seen[0].url) == "https://api.replicate.com/v1/predictions/pred-1"
    assert seen[0].headers["Authorization"] == "Bearer r8_token"


def test_replicate_processing_reports_progress() -> None:
    provider = ReplicateProvider("r8", transport=_transport(payload={"status": "processing", "progress": 0.42}))
    job = asyncio.run(provider.get_status("pred-1"))
    assert job.state == JobState.PROCESSING
    assert job.progress == 42


@pytest.mark.parametrize(
    "payload, code",
    [
        ({"status": "failed", "error": "CUDA out of memory"}, "REPLICATE_FAILED"),
        ({"status": "canceled"}, "CANCELED"),
    ],
)
def test_replicate_explicit_failure_is_fatal(payload, code) -> None:
    provider = ReplicateProvider("r8", transport=_transport(payload=payload))
    with pytest.raises(ProviderFatalError) as exc:
        asyncio.run(provider.get_status("pred-1"))
    assert exc.value.error_code == code


def test_http_503_is_transient() -> None:
    provider = ReplicateProvider("r8", transport=_transport(status_code=503))
    with pytest.raises(ProviderTransientError):
        asyncio.run(provider.get_status("pred-1"))


def test_network_error_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = MiniMaxProvider("mm", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderTransientError):
        asyncio.run(provider.get_status("task-1"))


def test_minimax_success_returns_video_url() -> None:
    seen = []
    provider = MiniMaxProvider(
        "mm",
        endpoint="https://api.minimax.io/v1/",
        transport=_transport(payload={"status": "success", "download_url": "https://mm.example/v.mp4"}, seen=seen),
    )
    job = asyncio.run(provider.get_status("task-1"))

    assert job.state == JobState.COMPLETED
    assert job.output_url == "https://mm.example/v.mp4"
    assert str(seen[0].url) == "https://api.minimax.io/v1/video_generation/task-1"


def test_minimax_failure_is_fatal_and_pending_is_processing() -> None:
    failing = MiniMaxProvider("mm", transport=_transport(payload={"status": "error", "error": "content policy"}))
    with pytest.raises(ProviderFatalError) as exc:
        asyncio.run(failing.get_status("task-1"))
    assert exc.value.message == "content policy"

    pending = MiniMaxProvider("mm", transport=_transport(payload={"status": "pending"}))
    assert asyncio.run(pending.get_status("task-1")).state == JobState.PROCESSING


def test_bfl_uses_polling_url_from_metadata() -> None:
    seen = []
    provider = BFLProvider(
        "bfl-key",
        transport=_transport(payload={"status": "Ready", "result": {"sample": "https://bfl.example/s.jpg"}}, seen=seen),
    )
    job = asyncio.run(provider.get_status("job-1", metadata={"pollingUrl": "https://api.us1.bfl.ai/v1/get_result?id=job-1"}))

    assert job.output_url == "https://bfl.example/s.jpg"
    assert seen[0].url.host == "api.us1.bfl.ai"
    assert seen[0].headers["x-key"] == "bfl-key"


def test_bfl_falls_back_to_result_endpoint() -> None:
    seen = []
    provider = BFLProvider("bfl-key", transport=_transport(payload={"status": "Task not found"}, seen=seen))
    job = asyncio.run(provider.get_status("job-1"))

    assert job.state == JobState.PROCESSING
    assert seen[0].url.path == "/v1/get_result"
    assert seen[0].url.params["id"] == "job-1"


def test_bfl_moderation_is_fatal() -> None:
    provider = BFLProvider("bfl-key", transport=_transport(payload={"status": "Content Moderated"}))
    with pytest.raises(ProviderFatalError):
        asyncio.run(provider.get_status("job-1"))


def test_registry_skips_unknown_and_unconfigured_providers(monkeypatch) -> None:
    monkeypatch.setattr(settings, "REPLICATE_API_TOKEN", "")
    monkeypatch.setattr(settings, "MINIMAX_API_KEY", "mm-key")

    registry = ProviderRegistry()
    registry.register(ReplicateProvider)
    registry.register(MiniMaxProvider)

    assert registry.get_provider("midjourney") is None
    assert registry.get_provider(None) is None
    assert registry.get_provider("replicate") is None

    minimax = registry.get_provider("minimax")
    assert isinstance(minimax, MiniMaxProvider)
    assert registry.get_provider("minimax") is minimax


def test_default_registry_knows_all_status_clients() -> None:
    names = {p["name"] for p in provider_registry.list_providers()}
    assert names == {"replicate", "minimax", "bfl", "google-veo"}


@pytest.mark.parametrize("body", [b"null", b"[]", b'"queued"'])
def test_non_object_json_body_is_transient(body) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body, headers={"content-type": "application/json"})

    provider = ReplicateProvider("r8", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderTransientError):
        asyncio.run(provider.get_status("pred-1"))


@pytest.mark.parametrize(
    "provider_class, progress, expected",
    [
        (BFLProvider, 45.5, 45),
        (BFLProvider, 1, 100),
        (BFLProvider, 0.3, 30),
        (MiniMaxProvider, 37.5, 37),
        (MiniMaxProvider, 1, 1),
        (MiniMaxProvider, 250, 100),
        (MiniMaxProvider, -4, 0),
        (MiniMaxProvider, "50%", None),
        (MiniMaxProvider, True, None),
        (ReplicateProvider, 0.999, 99),
    ],
)
def test_progress_is_an_int_percentage(provider_class, progress, expected) -> None:
    payload = {"status": "processing" if provider_class is not BFLProvider else "Pending", "progress": progress}
    provider = provider_class("key", transport=_transport(payload=payload))
    job = asyncio.run(provider.get_status("job-1"))

    assert job.state == JobState.PROCESSING
    assert job.progress == expected


def _veo(payload: dict, seen: list = None) -> GoogleVeoProvider:
    return GoogleVeoProvider(
        "gensy-prod",
        location="us-central1",
        credentials=Credentials(token="ya29.test-token"),
        transport=_transport(payload=payload, seen=seen),
    )


def test_veo_running_operation_is_processing() -> None:
    seen = []
    provider = _veo({"name": "op", "done": False}, seen=seen)
    job = asyncio.run(provider.get_status("op-123"))

    assert job.state == JobState.PROCESSING
    assert str(seen[0].url) == (
        "https://us-central1-aiplatform.googleapis.com/v1/projects/gensy-prod/locations/us-central1"
        "/publishers/google/models/veo-2.0-generate-001/operations/op-123"
    )
    assert seen[0].headers["Authorization"] == "Bearer ya29.test-token"


def test_veo_full_operation_name_picks_its_region() -> None:
    seen = []
    name = "projects/p/locations/europe-west4/publishers/google/models/veo-3.0-generate-preview/operations/9"
    provider = _veo({"done": False}, seen=seen)
    asyncio.run(provider.get_status("9", metadata={"operationName": name}))

    assert seen[0].url.host == "europe-west4-aiplatform.googleapis.com"
    assert seen[0].url.path == f"/v1/{name}"


def test_veo_finished_with_video_is_completed() -> None:
    provider = _veo({"done": True, "response": {"videos": [{"gcsUri": "gs://gensy-veo/out/sample_0.mp4"}]}})
    job = asyncio.run(provider.get_status("op-123"))

    assert job.state == JobState.COMPLETED
    assert job.output_url == "https://storage.googleapis.com/gensy-veo/out/sample_0.mp4"


def test_veo_finished_with_error_is_fatal() -> None:
    provider = _veo({"done": True, "error": {"code": 3, "message": "Prompt violates policy"}})
    with pytest.raises(ProviderFatalError) as exc:
        asyncio.run(provider.get_status("op-123"))
    assert exc.value.error_code == "VEO_FAILED"
    assert exc.value.message == "Prompt violates policy"


def test_veo_filtered_output_is_fatal() -> None:
    provider = _veo({"done": True, "response": {"raiMediaFilteredCount": 1}})
    with pytest.raises(ProviderFatalError) as exc:
        asyncio.run(provider.get_status("op-123"))
    assert exc.value.error_code == "CONTENT_FILTERED"


def test_registry_builds_veo_from_project_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings, "GOOGLE_CLOUD_PROJECT", "")
    registry = ProviderRegistry()
    registry.register(GoogleVeoProvider)
    assert registry.get_provider("google-veo") is None

    monkeypatch.setattr(settings, "GOOGLE_CLOUD_PROJECT", "gensy-prod")
    monkeypatch.setattr(settings, "GOOGLE_CLOUD_LOCATION", "asia-east1")
    veo = registry.get_provider("google-veo")
    assert isinstance(veo, GoogleVeoProvider)
    assert veo.project_id == "gensy-prod"
    assert veo.location == "asia-east1"
