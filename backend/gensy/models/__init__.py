from gensy.models.base import Base, TimestampMixin, UUIDMixin, utcnow
from gensy.models.account import Account
from gensy.models.transaction import CreditTransaction, TransactionKind, CREDIT_KINDS
from gensy.models.generation import (
    Generation,
    GenerationType,
    GenerationStatus,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    CANCELLED_MESSAGE,
)
from gensy.models.generation_event import GenerationEvent

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "utcnow",
    "Account",
    "CreditTransaction",
    "TransactionKind",
    "CREDIT_KINDS",
    "Generation",
    "GenerationType",
    "GenerationStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "CANCELLED_MESSAGE",
    "GenerationEvent",
]
