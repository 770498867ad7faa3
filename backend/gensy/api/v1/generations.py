from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gensy.database import get_db
from gensy.api.deps import get_current_user_id, require_internal_key
from gensy.api.schemas import (
    AttachJobRequest,
    CompleteRequest,
    FailRequest,
    GenerationCreateRequest,
    GenerationEventResponse,
    GenerationListResponse,
    GenerationResponse,
    Pagination,
    StatusResponse,
)
from gensy.api.v1.credits import insufficient_credits_response
from gensy.errors import (
    GenerationNotFoundError,
    InsufficientCreditsError,
    InvalidStateError,
    LedgerUnavailableError,
)
from gensy.models.generation import GenerationStatus, GenerationType
from gensy.services.generation_events import get_generation_events
from gensy.services.lifecycle import generation_lifecycle
from gensy.services.poller import status_poller
from gensy.services.pricing import credits_for

router = APIRouter()


@router.post("", response_model=GenerationResponse, status_code=201)
async def create_generation(
    data: GenerationCreateRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    credits_required = credits_for(data.type.value, quality=data.quality, count=data.count, enhanced=data.enhanced)
    params = dict(data.params)
    if data.quality:
        params["quality"] = data.quality
    if data.type == GenerationType.BATCH:
        params["count"] = data.count
    if data.type == GenerationType.UPSCALE:
        params["enhanced"] = data.enhanced

    try:
        generation = await generation_lifecycle.start_generation(
            db,
            user_id=user_id,
            type=data.type.value,
            credits_required=credits_required,
            prompt=data.prompt,
            model=data.model,
            params=params,
            provider=data.provider,
            external_job_id=data.job_id,
        )
    except InsufficientCreditsError as e:
        return insufficient_credits_response(e.required, e.available)
    except LedgerUnavailableError:
        raise HTTPException(status_code=503, detail="Ledger unavailable, try again")

    return GenerationResponse.from_generation(generation)


@router.get("", response_model=GenerationListResponse)
async def list_generations(
    type: Optional[GenerationType] = None,
    status: Optional[GenerationStatus] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    generations, total = await generation_lifecycle.list_generations(
        db,
        user_id,
        type=type.value if type else None,
        status=status.value if status else None,
        limit=limit,
        offset=offset,
    )
    return GenerationListResponse(
        generations=[GenerationResponse.from_generation(g) for g in generations],
        pagination=Pagination(limit=limit, offset=offset, total=total, has_more=offset + len(generations) < total),
    )


@router.get("/{generation_id}", response_model=GenerationResponse)
async def get_generation(
    generation_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        generation = await generation_lifecycle.get_generation(db, generation_id, user_id=user_id)
    except GenerationNotFoundError:
        raise HTTPException(status_code=404, detail="Generation not found")
    return GenerationResponse.from_generation(generation)


@router.get("/{generation_id}/status", response_model=StatusResponse, response_model_exclude_none=True)
async def get_generation_status(
    generation_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        result = await status_poller.poll(db, generation_id, user_id=user_id)
    except GenerationNotFoundError:
        raise HTTPException(status_code=404, detail="Generation not found")
    except LedgerUnavailableError:
        raise HTTPException(status_code=503, detail="Ledger unavailable, try again")

    return StatusResponse(
        status=result.status,
        progress=result.progress,
        result_url=result.result_url,
        error=result.error,
        message=result.message,
    )


@router.get("/{generation_id}/events", response_model=List[GenerationEventResponse])
async def get_generation_event_log(
    generation_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        await generation_lifecycle.get_generation(db, generation_id, user_id=user_id)
    except GenerationNotFoundError:
        raise HTTPException(status_code=404, detail="Generation not found")

    events = await get_generation_events(db, generation_id)
    return [GenerationEventResponse.from_event(e) for e in events]


@router.delete("/{generation_id}")
async def cancel_generation(
    generation_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        await generation_lifecycle.cancel_generation(db, generation_id, user_id)
    except GenerationNotFoundError:
        raise HTTPException(status_code=404, detail="Generation not found")
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerUnavailableError:
        raise HTTPException(status_code=503, detail="Ledger unavailable, try again")

    return {"success": True}


@router.put("/{generation_id}/job", response_model=GenerationResponse, dependencies=[Depends(require_internal_key)])
async def attach_provider_job(
    generation_id: UUID,
    data: AttachJobRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        generation = await generation_lifecycle.attach_provider_job(
            db, generation_id, data.provider, data.job_id, extra=data.extra
        )
    except GenerationNotFoundError:
        raise HTTPException(status_code=404, detail="Generation not found")
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return GenerationResponse.from_generation(generation)


@router.post("/{generation_id}/complete", response_model=GenerationResponse, dependencies=[Depends(require_internal_key)])
async def complete_generation(
    generation_id: UUID,
    data: CompleteRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        generation = await generation_lifecycle.complete_generation(
            db, generation_id, data.result_url, metadata=data.metadata
        )
    except GenerationNotFoundError:
        raise HTTPException(status_code=404, detail="Generation not found")
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return GenerationResponse.from_generation(generation)


@router.post("/{generation_id}/fail", response_model=GenerationResponse, dependencies=[Depends(require_internal_key)])
async def fail_generation(
    generation_id: UUID,
    data: FailRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        generation = await generation_lifecycle.fail_generation(
            db,
            generation_id,
            data.error_message,
            should_refund=data.should_refund,
            error_code=data.error_code,
        )
    except GenerationNotFoundError:
        raise HTTPException(status_code=404, detail="Generation not found")
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerUnavailableError:
        raise HTTPException(status_code=503, detail="Ledger unavailable, try again")

    return GenerationResponse.from_generation(generation)
