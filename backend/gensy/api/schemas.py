from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gensy.models.generation import Generation, GenerationType
from gensy.models.generation_event import GenerationEvent
from gensy.models.transaction import CreditTransaction


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Pagination(CamelModel):
    limit: int
    offset: int
    total: Optional[int] = None
    has_more: bool


# Credits

class BalanceResponse(CamelModel):
    credits: int


class DebitRequest(CamelModel):
    amount: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=500)
    generation_id: Optional[UUID] = None


class CreditGrantRequest(CamelModel):
    user_id: str = Field(min_length=1, max_length=255)
    amount: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=500)
    kind: Literal["purchase", "bonus", "refund"] = "bonus"
    payment_id: Optional[str] = None
    generation_id: Optional[UUID] = None


class CreditResultResponse(CamelModel):
    success: bool
    new_balance: int


class SummaryResponse(CamelModel):
    current: int
    total_earned: int
    total_spent: int
    last_updated: datetime


class TransactionResponse(CamelModel):
    id: int
    kind: str
    amount: int
    description: str
    generation_id: Optional[UUID] = None
    payment_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_transaction(cls, tx: CreditTransaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            kind=tx.kind,
            amount=tx.amount,
            description=tx.description,
            generation_id=tx.generation_id,
            payment_id=tx.payment_id,
            created_at=tx.created_at,
        )


class HistoryResponse(CamelModel):
    transactions: List[TransactionResponse]
    pagination: Pagination


# Generations

class GenerationCreateRequest(CamelModel):
    type: GenerationType
    prompt: Optional[str] = Field(None, max_length=4000)
    model: Optional[str] = None
    quality: Optional[str] = None
    count: int = Field(1, ge=1, le=50)
    enhanced: bool = False
    params: dict = Field(default_factory=dict)
    provider: Optional[str] = None
    job_id: Optional[str] = None


class GenerationResponse(CamelModel):
    id: UUID
    type: str
    status: str
    prompt: Optional[str] = None
    model: Optional[str] = None
    credits_used: int
    provider: Optional[str] = None
    external_job_id: Optional[str] = None
    result_url: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[dict] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_generation(cls, generation: Generation) -> "GenerationResponse":
        return cls(
            id=generation.id,
            type=generation.type,
            status=generation.status,
            prompt=generation.prompt,
            model=generation.model,
            credits_used=generation.credits_used,
            provider=generation.provider,
            external_job_id=generation.external_job_id,
            result_url=generation.result_url,
            error_code=generation.error_code,
            error_message=generation.error_message,
            metadata=generation.metadata_,
            created_at=generation.created_at,
            updated_at=generation.updated_at,
            completed_at=generation.completed_at,
        )


class GenerationListResponse(CamelModel):
    generations: List[GenerationResponse]
    pagination: Pagination


class StatusResponse(CamelModel):
    status: str
    progress: Optional[int] = None
    result_url: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None


class GenerationEventResponse(CamelModel):
    id: UUID
    event_type: str
    external_status: Optional[str] = None
    response_data: Optional[Any] = None
    error_message: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_event(cls, event: GenerationEvent) -> "GenerationEventResponse":
        return cls(
            id=event.id,
            event_type=event.event_type,
            external_status=event.external_status,
            response_data=event.response_data,
            error_message=event.error_message,
            created_at=event.created_at,
        )


class AttachJobRequest(CamelModel):
    provider: str = Field(min_length=1, max_length=50)
    job_id: str = Field(min_length=1, max_length=255)
    extra: Optional[dict] = None


class CompleteRequest(CamelModel):
    result_url: str = Field(min_length=1, max_length=1000)
    metadata: Optional[dict] = None


class FailRequest(CamelModel):
    error_message: str = Field(min_length=1)
    error_code: Optional[str] = Field(None, max_length=50)
    should_refund: bool = True
