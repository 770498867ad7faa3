import uuid
from enum import Enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, BigInteger, DateTime, ForeignKey, CheckConstraint, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from gensy.database import Base
from gensy.models.base import utcnow


class TransactionKind(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"
    BONUS = "bonus"


CREDIT_KINDS = (TransactionKind.PURCHASE, TransactionKind.BONUS, TransactionKind.REFUND)


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint(
            "(kind = 'usage' AND amount < 0) OR (kind <> 'usage' AND amount > 0)",
            name="ck_credit_transactions_amount_sign",
        ),
        # At most one charge and one refund per generation
        UniqueConstraint("generation_id", "kind", name="uq_credit_transactions_generation_kind"),
        Index("idx_credit_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(String(255), ForeignKey("accounts.user_id"))
    kind: Mapped[str] = mapped_column(String(20))
    amount: Mapped[int] = mapped_column(BigInteger)  # signed
    description: Mapped[str] = mapped_column(String(500), default="")

    generation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("generations.id", ondelete="SET NULL"), nullable=True
    )
    payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
