import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from gensy.config import settings
from gensy.errors import ProviderFatalError, ProviderTransientError, InvalidStateError
from gensy.models.generation import Generation, GenerationStatus
from gensy.providers.base import JobState
from gensy.providers.registry import ProviderRegistry, provider_registry
from gensy.services import generation_events as events
from gensy.services.lifecycle import generation_lifecycle
from gensy.services.storage import StorageService, storage_service

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    status: str
    progress: Optional[int] = None
    result_url: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def from_generation(cls, generation: Generation) -> "PollResult":
        if generation.status == GenerationStatus.COMPLETED.value:
            return cls(status=generation.status, progress=100, result_url=generation.result_url)
        if generation.status == GenerationStatus.FAILED.value:
            return cls(status=generation.status, error=generation.error_message)
        return cls(status=generation.status)


class StatusPoller:
    """Reconciles a generation with the provider job behind it.

    Only an explicit failure reported by the provider fails the generation.
    Network errors and unexpected responses leave it processing so the
    client simply polls again.
    """

    def __init__(
        self,
        registry: ProviderRegistry = provider_registry,
        storage: Optional[StorageService] = None,
        persist_results: Optional[bool] = None,
    ):
        self.registry = registry
        self.storage = storage or storage_service
        self.persist_results = persist_results

    @property
    def _should_persist(self) -> bool:
        if self.persist_results is not None:
            return self.persist_results
        return settings.STORAGE_PERSIST_RESULTS

    async def poll(self, db: AsyncSession, generation_id: UUID, user_id: Optional[str] = None) -> PollResult:
        generation = await generation_lifecycle.get_generation(db, generation_id, user_id=user_id)
        if generation.is_terminal:
            return PollResult.from_generation(generation)

        if not generation.external_job_id:
            return PollResult(status=GenerationStatus.PROCESSING.value, progress=0, message="Waiting for provider job")

        provider = self.registry.get_provider(generation.provider)
        if provider is None:
            logger.warning(
                "[Poller] no configured provider %r for generation %s", generation.provider, generation.id
            )
            return PollResult(status=GenerationStatus.PROCESSING.value, message="Provider unavailable")

        try:
            job = await provider.get_status(generation.external_job_id, metadata=generation.metadata_)
        except ProviderTransientError as e:
            logger.warning("[Poller] transient error for generation %s: %s", generation.id, e)
            return PollResult(status=GenerationStatus.PROCESSING.value, message="Status check failed, retry later")
        except ProviderFatalError as e:
            logger.info("[Poller] provider reported failure for generation %s: %s", generation.id, e.message)
            return await self._fail(db, generation, e)

        if job.state == JobState.COMPLETED:
            result_url = await self._persist(generation, job.output_url)
            try:
                completed = await generation_lifecycle.complete_generation(
                    db,
                    generation.id,
                    result_url,
                    metadata={"providerUrl": job.output_url},
                    raw_response=job.raw_response,
                )
            except InvalidStateError:
                # Failed concurrently, e.g. cancelled by the user
                completed = await generation_lifecycle.get_generation(db, generation.id)
            return PollResult.from_generation(completed)

        await events.log_poll(db, generation.id, job.external_status or "processing", progress=job.progress, raw_response=job.raw_response)
        await db.commit()
        return PollResult(status=GenerationStatus.PROCESSING.value, progress=job.progress)

    async def _fail(self, db: AsyncSession, generation: Generation, error: ProviderFatalError) -> PollResult:
        try:
            failed = await generation_lifecycle.fail_generation(
                db,
                generation.id,
                error.message,
                should_refund=True,
                error_code=error.error_code,
                raw_response=error.raw_response,
            )
        except InvalidStateError:
            failed = await generation_lifecycle.get_generation(db, generation.id)
        return PollResult.from_generation(failed)

    async def _persist(self, generation: Generation, output_url: str) -> str:
        if not self._should_persist:
            return output_url
        try:
            return await self.storage.persist_result(generation.user_id, generation.type, output_url)
        except Exception:
            logger.exception("[Storage] could not persist result of generation %s, keeping provider URL", generation.id)
            return output_url


status_poller = StatusPoller()
