"""Persistence of credit accounts and the append-only transaction log.

The account row caches the balance; every mutation goes through
``append_transaction`` so the cached value and the log move together inside
the caller's unit of work. Debits are a single conditional UPDATE, so two
concurrent spends can never both pass the floor check.
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update, func, case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gensy.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    LedgerConsistencyError,
    DuplicateTransactionError,
    LedgerError,
)
from gensy.models.account import Account
from gensy.models.base import utcnow
from gensy.models.transaction import CreditTransaction, TransactionKind, CREDIT_KINDS

logger = logging.getLogger(__name__)

UPSERT_BUILDERS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class LedgerStore:

    @staticmethod
    async def get_account(db: AsyncSession, user_id: str) -> Optional[Account]:
        result = await db.execute(select(Account).where(Account.user_id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_balance(db: AsyncSession, user_id: str) -> int:
        result = await db.execute(select(Account.balance).where(Account.user_id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise AccountNotFoundError(user_id)
        return int(balance)

    @staticmethod
    async def append_transaction(
        db: AsyncSession,
        user_id: str,
        kind: TransactionKind,
        amount: int,
        description: str,
        generation_id: Optional[UUID] = None,
        payment_id: Optional[str] = None,
    ) -> CreditTransaction:
        """Write one ledger entry and apply it to the cached balance.

        Does not commit. Raises ``InsufficientBalanceError`` when a negative
        amount would take the balance below zero and
        ``DuplicateTransactionError`` when the generation already has an
        entry of this kind.
        """
        kind = TransactionKind(kind)
        if kind == TransactionKind.USAGE and amount >= 0:
            raise ValueError("usage transactions must have a negative amount")
        if kind != TransactionKind.USAGE and amount <= 0:
            raise ValueError(f"{kind.value} transactions must have a positive amount")

        if generation_id is not None:
            existing = await LedgerStore.find_transaction(db, generation_id, kind)
            if existing is not None:
                raise DuplicateTransactionError(
                    f"Generation {generation_id} already has a {kind.value} transaction"
                )

        if amount < 0:
            new_balance = await LedgerStore._apply_debit(db, user_id, -amount)
        else:
            new_balance = await LedgerStore._apply_credit(db, user_id, amount)

        transaction = CreditTransaction(
            user_id=user_id,
            kind=kind.value,
            amount=amount,
            description=description[:500],
            generation_id=generation_id,
            payment_id=payment_id,
        )
        db.add(transaction)
        try:
            await db.flush()
        except IntegrityError as e:
            if generation_id is not None:
                raise DuplicateTransactionError(
                    f"Generation {generation_id} already has a {kind.value} transaction"
                ) from e
            raise LedgerConsistencyError(str(e.orig)) from e

        logger.info(
            "[Ledger] %s %+d for user %s (balance %d, generation %s)",
            kind.value, amount, user_id, new_balance, generation_id,
        )
        return transaction

    @staticmethod
    async def _apply_debit(db: AsyncSession, user_id: str, amount: int) -> int:
        result = await db.execute(
            update(Account)
            .where(Account.user_id == user_id, Account.balance >= amount)
            .values(balance=Account.balance - amount, updated_at=utcnow())
            .returning(Account.balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            current = await db.execute(select(Account.balance).where(Account.user_id == user_id))
            available = current.scalar_one_or_none() or 0
            raise InsufficientBalanceError(required=amount, available=int(available))
        return int(new_balance)

    @staticmethod
    async def _apply_credit(db: AsyncSession, user_id: str, amount: int) -> int:
        dialect = db.get_bind().dialect.name
        build_insert = UPSERT_BUILDERS.get(dialect)
        if build_insert is None:
            raise LedgerError(f"Unsupported database dialect: {dialect}")

        now = utcnow()
        stmt = build_insert(Account).values(
            user_id=user_id,
            balance=amount,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Account.user_id],
            set_={
                "balance": Account.balance + stmt.excluded.balance,
                "updated_at": now,
            },
        ).returning(Account.balance)
        result = await db.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def find_transaction(
        db: AsyncSession,
        generation_id: UUID,
        kind: TransactionKind,
    ) -> Optional[CreditTransaction]:
        result = await db.execute(
            select(CreditTransaction).where(
                CreditTransaction.generation_id == generation_id,
                CreditTransaction.kind == TransactionKind(kind).value,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_transactions(
        db: AsyncSession,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        result = await db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def transaction_totals(db: AsyncSession, user_id: str) -> Tuple[int, int]:
        """Return (total earned, total spent) for the user."""
        earned = func.sum(
            case(
                (CreditTransaction.kind.in_([k.value for k in CREDIT_KINDS]), CreditTransaction.amount),
                else_=0,
            )
        )
        spent = func.sum(
            case(
                (CreditTransaction.kind == TransactionKind.USAGE.value, -CreditTransaction.amount),
                else_=0,
            )
        )
        result = await db.execute(
            select(func.coalesce(earned, 0), func.coalesce(spent, 0))
            .where(CreditTransaction.user_id == user_id)
        )
        total_earned, total_spent = result.one()
        return int(total_earned), int(total_spent)

    @staticmethod
    async def replay_balance(db: AsyncSession, user_id: str) -> int:
        result = await db.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0))
            .where(CreditTransaction.user_id == user_id)
        )
        return int(result.scalar_one())


ledger_store = LedgerStore()
