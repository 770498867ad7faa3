import logging
from datetime import timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from gensy.config import settings
from gensy.errors import (
    GenerationNotFoundError,
    InsufficientCreditsError,
    InvalidStateError,
    LedgerUnavailableError,
)
from gensy.models.base import utcnow
from gensy.models.generation import (
    Generation,
    GenerationType,
    GenerationStatus,
    ACTIVE_STATUSES,
    CANCELLED_MESSAGE,
)
from gensy.models.transaction import TransactionKind
from gensy.services.credits import credit_service
from gensy.services.ledger import ledger_store
from gensy.services import generation_events as events
from gensy.services.generation_events import EventType

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Generation timed out"


class GenerationLifecycle:
    """State machine for generations and the credits charged against them.

    Every transition out of an active status is a compare-and-swap on the
    status column, so a refund is issued by whichever caller wins the swap
    and by nobody else.
    """

    @staticmethod
    async def _load(db: AsyncSession, generation_id: UUID) -> Generation:
        generation = await db.get(Generation, generation_id, populate_existing=True)
        if generation is None:
            raise GenerationNotFoundError(generation_id)
        return generation

    @staticmethod
    async def _transition(db: AsyncSession, generation_id: UUID, values: dict) -> bool:
        values = {**values, Generation.updated_at: utcnow()}
        result = await db.execute(
            update(Generation)
            .where(Generation.id == generation_id, Generation.status.in_(ACTIVE_STATUSES))
            .values(values)
            .returning(Generation.id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def get_generation(
        db: AsyncSession,
        generation_id: UUID,
        user_id: Optional[str] = None,
    ) -> Generation:
        generation = await GenerationLifecycle._load(db, generation_id)
        if user_id is not None and generation.user_id != user_id:
            raise GenerationNotFoundError(generation_id)
        return generation

    @staticmethod
    async def list_generations(
        db: AsyncSession,
        user_id: str,
        type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Generation], int]:
        filters = [Generation.user_id == user_id]
        if type:
            filters.append(Generation.type == type)
        if status:
            filters.append(Generation.status == status)

        total = await db.scalar(select(func.count(Generation.id)).where(*filters))
        result = await db.execute(
            select(Generation)
            .where(*filters)
            .order_by(Generation.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    @staticmethod
    async def start_generation(
        db: AsyncSession,
        user_id: str,
        type: str,
        credits_required: int,
        prompt: Optional[str] = None,
        model: Optional[str] = None,
        params: Optional[dict] = None,
        provider: Optional[str] = None,
        external_job_id: Optional[str] = None,
    ) -> Generation:
        """Create a processing generation and charge for it in one unit of work.

        Raises ``InsufficientCreditsError`` when the balance does not cover
        ``credits_required``; no generation row survives in that case.
        """
        if credits_required < 0:
            raise ValueError("credits_required must not be negative")
        generation_type = GenerationType(type)

        if credits_required > 0:
            check = await credit_service.has_sufficient_balance(db, user_id, credits_required)
            if not check.sufficient:
                logger.info(
                    "[Lifecycle] %s generation refused for user %s: required %d, available %d",
                    generation_type.value, user_id, credits_required, check.current_balance,
                )
                raise InsufficientCreditsError(credits_required, check.current_balance)

        generation = Generation(
            user_id=user_id,
            type=generation_type.value,
            status=GenerationStatus.PROCESSING.value,
            prompt=prompt,
            model=model,
            credits_used=credits_required,
            provider=provider,
            external_job_id=external_job_id,
            metadata_=dict(params or {}),
        )
        db.add(generation)
        await db.flush()

        if credits_required > 0:
            description = f"{generation_type.value} generation"
            if prompt:
                description = f"{description}: {prompt[:50]}"
            result = await credit_service.debit(
                db,
                user_id=user_id,
                amount=credits_required,
                description=description,
                generation_id=generation.id,
                commit=False,
            )
            if not result.success:
                # Discards the flushed generation row together with the charge
                await db.rollback()
                logger.info(
                    "[Lifecycle] charge failed for user %s, generation discarded: %s",
                    user_id, result.error,
                )
                if result.retryable:
                    raise LedgerUnavailableError(result.error)
                available = result.available
                if available is None:
                    available = await credit_service.get_balance(db, user_id)
                raise InsufficientCreditsError(credits_required, available)

        await events.log_created(db, generation.id, credits_required, provider=provider, model=model)
        if external_job_id:
            await events.log_sent_to_provider(db, generation.id, external_job_id, provider)
        await db.commit()

        logger.info(
            "[Lifecycle] generation %s started for user %s (%s, %d credits)",
            generation.id, user_id, generation_type.value, credits_required,
        )
        return generation

    @staticmethod
    async def attach_provider_job(
        db: AsyncSession,
        generation_id: UUID,
        provider: str,
        external_job_id: str,
        extra: Optional[dict] = None,
    ) -> Generation:
        generation = await GenerationLifecycle._load(db, generation_id)
        if generation.is_terminal:
            raise InvalidStateError(
                f"Generation is already {generation.status}", current_status=generation.status
            )

        values = {
            Generation.provider: provider,
            Generation.external_job_id: external_job_id,
            Generation.status: GenerationStatus.PROCESSING.value,
        }
        if extra:
            values[Generation.metadata_] = {**(generation.metadata_ or {}), **extra}
        if not await GenerationLifecycle._transition(db, generation_id, values):
            await db.rollback()
            current = await GenerationLifecycle._load(db, generation_id)
            raise InvalidStateError(
                f"Generation is already {current.status}", current_status=current.status
            )

        await events.log_sent_to_provider(db, generation_id, external_job_id, provider, raw_response=extra)
        await db.commit()
        logger.info("[Lifecycle] generation %s attached to %s job %s", generation_id, provider, external_job_id)
        return await GenerationLifecycle._load(db, generation_id)

    @staticmethod
    async def complete_generation(
        db: AsyncSession,
        generation_id: UUID,
        result_url: str,
        metadata: Optional[dict] = None,
        raw_response: Optional[dict] = None,
    ) -> Generation:
        """Move an active generation to completed. Completing twice is a no-op."""
        generation = await GenerationLifecycle._load(db, generation_id)
        if generation.status == GenerationStatus.COMPLETED.value:
            return generation
        if generation.status == GenerationStatus.FAILED.value:
            raise InvalidStateError("Generation has already failed", current_status=generation.status)

        now = utcnow()
        values = {
            Generation.status: GenerationStatus.COMPLETED.value,
            Generation.result_url: result_url,
            Generation.completed_at: now,
        }
        if metadata:
            values[Generation.metadata_] = {**(generation.metadata_ or {}), **metadata}

        if not await GenerationLifecycle._transition(db, generation_id, values):
            await db.rollback()
            current = await GenerationLifecycle._load(db, generation_id)
            if current.status == GenerationStatus.COMPLETED.value:
                return current
            raise InvalidStateError("Generation has already failed", current_status=current.status)

        await events.log_completed(db, generation_id, result_url, raw_response=raw_response)
        await db.commit()
        logger.info("[Lifecycle] generation %s completed", generation_id)
        return await GenerationLifecycle._load(db, generation_id)

    @staticmethod
    async def fail_generation(
        db: AsyncSession,
        generation_id: UUID,
        error_message: str,
        should_refund: bool = True,
        error_code: Optional[str] = None,
        event_type: EventType = EventType.FAILED,
        raw_response: Optional[dict] = None,
    ) -> Generation:
        """Move an active generation to failed, refunding its charge at most once.

        Failing an already failed generation returns it unchanged.
        """
        generation = await GenerationLifecycle._load(db, generation_id)
        if generation.status == GenerationStatus.FAILED.value:
            return generation
        if generation.status == GenerationStatus.COMPLETED.value:
            raise InvalidStateError("Generation has already completed", current_status=generation.status)

        return await GenerationLifecycle._fail(
            db,
            generation,
            error_message=error_message,
            should_refund=should_refund,
            error_code=error_code,
            event_type=event_type,
            raw_response=raw_response,
            require_active=False,
        )

    @staticmethod
    async def _fail(
        db: AsyncSession,
        generation: Generation,
        error_message: str,
        should_refund: bool,
        error_code: Optional[str],
        event_type: EventType,
        raw_response: Optional[dict],
        require_active: bool,
    ) -> Generation:
        generation_id = generation.id
        user_id = generation.user_id
        credits_used = generation.credits_used or 0

        won = await GenerationLifecycle._transition(
            db,
            generation_id,
            {
                Generation.status: GenerationStatus.FAILED.value,
                Generation.error_code: error_code,
                Generation.error_message: error_message,
                Generation.completed_at: utcnow(),
            },
        )
        if not won:
            await db.rollback()
            current = await GenerationLifecycle._load(db, generation_id)
            if current.status == GenerationStatus.FAILED.value and not require_active:
                return current
            raise InvalidStateError(
                f"Generation is already {current.status}", current_status=current.status
            )

        refunded = 0
        if should_refund and credits_used > 0:
            charge = await ledger_store.find_transaction(db, generation_id, TransactionKind.USAGE)
            if charge is None:
                logger.warning("[Lifecycle] generation %s has no charge to refund", generation_id)
            else:
                result = await credit_service.refund(
                    db,
                    user_id=user_id,
                    amount=credits_used,
                    generation_id=generation_id,
                    reason=f"Refund: {error_message}"[:500],
                    commit=False,
                )
                if result.success:
                    refunded = credits_used
                elif result.retryable:
                    await db.rollback()
                    raise LedgerUnavailableError(result.error)
                else:
                    logger.warning("[Lifecycle] generation %s refund skipped: %s", generation_id, result.error)

        await events.log_failed(
            db,
            generation_id,
            error_code=error_code,
            error_message=error_message,
            event_type=event_type,
            refunded=refunded,
            raw_response=raw_response,
        )
        await db.commit()
        logger.info(
            "[Lifecycle] generation %s failed (%s), refunded %d credits",
            generation_id, error_code or error_message, refunded,
        )
        return await GenerationLifecycle._load(db, generation_id)

    @staticmethod
    async def cancel_generation(db: AsyncSession, generation_id: UUID, user_id: str) -> Generation:
        generation = await GenerationLifecycle.get_generation(db, generation_id, user_id=user_id)
        if generation.status not in ACTIVE_STATUSES:
            raise InvalidStateError(
                f"Cannot cancel a {generation.status} generation", current_status=generation.status
            )

        return await GenerationLifecycle._fail(
            db,
            generation,
            error_message=CANCELLED_MESSAGE,
            should_refund=settings.REFUND_ON_CANCEL,
            error_code="CANCELLED",
            event_type=EventType.CANCELLED,
            raw_response=None,
            require_active=True,
        )

    @staticmethod
    async def sweep_stale_generations(db: AsyncSession, older_than: timedelta) -> int:
        """Fail and refund every active generation created before ``older_than`` ago."""
        cutoff = utcnow() - older_than
        result = await db.execute(
            select(Generation.id)
            .where(Generation.status.in_(ACTIVE_STATUSES), Generation.created_at < cutoff)
            .order_by(Generation.created_at.asc())
        )
        stale_ids = list(result.scalars().all())

        expired = 0
        for generation_id in stale_ids:
            try:
                generation = await GenerationLifecycle.fail_generation(
                    db,
                    generation_id,
                    TIMEOUT_MESSAGE,
                    should_refund=True,
                    error_code="TIMEOUT",
                    event_type=EventType.TIMEOUT,
                )
            except (InvalidStateError, GenerationNotFoundError) as e:
                logger.info("[Lifecycle] skipping %s during sweep: %s", generation_id, e)
                continue
            if generation.error_code == "TIMEOUT":
                expired += 1
        return expired


generation_lifecycle = GenerationLifecycle()
