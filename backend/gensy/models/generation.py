from enum import Enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Text, Integer, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from gensy.database import Base
from gensy.models.base import UUIDMixin, TimestampMixin


class GenerationType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    UPSCALE = "upscale"
    BATCH = "batch"
    CONVERSION = "conversion"


class GenerationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (GenerationStatus.PENDING.value, GenerationStatus.PROCESSING.value)
TERMINAL_STATUSES = (GenerationStatus.COMPLETED.value, GenerationStatus.FAILED.value)

CANCELLED_MESSAGE = "Cancelled by user"


class Generation(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "generations"
    __table_args__ = (
        Index("idx_generations_user_created", "user_id", "created_at"),
        Index("idx_generations_status", "status"),
    )

    user_id: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), default=GenerationStatus.PENDING.value)

    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    credits_used: Mapped[int] = mapped_column(Integer, default=0)

    provider: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    external_job_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    result_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    events: Mapped[list["GenerationEvent"]] = relationship(
        back_populates="generation", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_cancelled(self) -> bool:
        return self.status == GenerationStatus.FAILED.value and self.error_message == CANCELLED_MESSAGE
