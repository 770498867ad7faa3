"""Business-level credit operations over the ledger store.

Store errors never escape from here: every operation returns a
``CreditResult`` so route handlers can answer with a 402 (or a retry hint)
without knowing anything about the database.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gensy.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    DuplicateTransactionError,
    LedgerConsistencyError,
    LedgerError,
)
from gensy.models.base import utcnow
from gensy.models.transaction import CreditTransaction, TransactionKind, CREDIT_KINDS
from gensy.services.ledger import ledger_store

logger = logging.getLogger(__name__)


@dataclass
class BalanceCheck:
    sufficient: bool
    current_balance: int


@dataclass
class CreditResult:
    success: bool
    new_balance: Optional[int] = None
    error: Optional[str] = None
    required: Optional[int] = None
    available: Optional[int] = None
    retryable: bool = False
    transaction_id: Optional[int] = None


@dataclass
class CreditSummary:
    current: int
    total_earned: int
    total_spent: int
    last_updated: datetime


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Credit amounts must be positive integers, got {amount!r}")


class CreditService:

    @staticmethod
    async def get_balance(db: AsyncSession, user_id: str) -> int:
        # Accounts are provisioned lazily on first credit
        try:
            return await ledger_store.get_balance(db, user_id)
        except AccountNotFoundError:
            return 0

    @staticmethod
    async def has_sufficient_balance(db: AsyncSession, user_id: str, amount: int) -> BalanceCheck:
        """Advisory pre-check; ``debit`` performs the authoritative one."""
        current = await CreditService.get_balance(db, user_id)
        return BalanceCheck(sufficient=current >= amount, current_balance=current)

    @staticmethod
    async def debit(
        db: AsyncSession,
        user_id: str,
        amount: int,
        description: str,
        generation_id: Optional[UUID] = None,
        commit: bool = True,
    ) -> CreditResult:
        """Charge ``amount`` credits.

        With ``commit=False`` the caller owns the unit of work, including the
        rollback after a failed result.
        """
        _require_positive(amount)
        try:
            transaction = await ledger_store.append_transaction(
                db,
                user_id=user_id,
                kind=TransactionKind.USAGE,
                amount=-amount,
                description=description,
                generation_id=generation_id,
            )
            new_balance = await ledger_store.get_balance(db, user_id)
            if commit:
                await db.commit()
        except InsufficientBalanceError as e:
            logger.info(
                "[Credits] debit refused for user %s: required %d, available %d",
                user_id, e.required, e.available,
            )
            if commit:
                await db.rollback()
            return CreditResult(
                success=False,
                new_balance=e.available,
                error="Insufficient credits",
                required=amount,
                available=e.available,
            )
        except DuplicateTransactionError as e:
            logger.warning("[Credits] duplicate charge rejected: %s", e)
            if commit:
                await db.rollback()
            return CreditResult(success=False, error="Generation already charged")
        except LedgerConsistencyError as e:
            # Lost a concurrent race on the balance floor
            logger.warning("[Credits] debit for user %s rejected by ledger: %s", user_id, e)
            available = None
            if commit:
                await db.rollback()
                available = await ledger_store.get_balance(db, user_id)
            return CreditResult(success=False, error="Insufficient credits", required=amount, available=available)
        except (LedgerError, SQLAlchemyError):
            logger.exception("[Credits] debit failed for user %s", user_id)
            if commit:
                await db.rollback()
            return CreditResult(success=False, error="Ledger unavailable", retryable=True)

        return CreditResult(success=True, new_balance=new_balance, transaction_id=transaction.id)

    @staticmethod
    async def credit(
        db: AsyncSession,
        user_id: str,
        amount: int,
        description: str,
        kind: TransactionKind = TransactionKind.BONUS,
        payment_id: Optional[str] = None,
        generation_id: Optional[UUID] = None,
        commit: bool = True,
    ) -> CreditResult:
        _require_positive(amount)
        kind = TransactionKind(kind)
        if kind not in CREDIT_KINDS:
            raise ValueError(f"{kind.value} is not a crediting transaction kind")
        try:
            transaction = await ledger_store.append_transaction(
                db,
                user_id=user_id,
                kind=kind,
                amount=amount,
                description=description,
                generation_id=generation_id,
                payment_id=payment_id,
            )
            new_balance = await ledger_store.get_balance(db, user_id)
            if commit:
                await db.commit()
        except DuplicateTransactionError as e:
            logger.warning("[Credits] duplicate %s rejected: %s", kind.value, e)
            if commit:
                await db.rollback()
            return CreditResult(success=False, error=f"{kind.value.capitalize()} already recorded")
        except (LedgerError, SQLAlchemyError):
            logger.exception("[Credits] %s failed for user %s", kind.value, user_id)
            if commit:
                await db.rollback()
            return CreditResult(success=False, error="Ledger unavailable", retryable=True)

        return CreditResult(success=True, new_balance=new_balance, transaction_id=transaction.id)

    @staticmethod
    async def refund(
        db: AsyncSession,
        user_id: str,
        amount: int,
        generation_id: UUID,
        reason: str,
        commit: bool = True,
    ) -> CreditResult:
        return await CreditService.credit(
            db,
            user_id=user_id,
            amount=amount,
            description=reason,
            kind=TransactionKind.REFUND,
            generation_id=generation_id,
            commit=commit,
        )

    @staticmethod
    async def history(
        db: AsyncSession,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        return await ledger_store.list_transactions(db, user_id, limit=limit, offset=offset)

    @staticmethod
    async def summary(db: AsyncSession, user_id: str) -> CreditSummary:
        account = await ledger_store.get_account(db, user_id)
        if account is None:
            return CreditSummary(current=0, total_earned=0, total_spent=0, last_updated=utcnow())
        total_earned, total_spent = await ledger_store.transaction_totals(db, user_id)
        return CreditSummary(
            current=account.balance,
            total_earned=total_earned,
            total_spent=total_spent,
            last_updated=account.updated_at,
        )


credit_service = CreditService()
