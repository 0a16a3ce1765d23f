# app/infrastructure/db/models/transaction.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.infrastructure.db.database import Base

if TYPE_CHECKING:
    from app.infrastructure.db.models.user import User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionKind(str, Enum):
    ENTRY = "entry"      # списание взноса за участие
    WIN = "win"          # выплата победителю
    REFUND = "refund"    # возврат взноса при отмене колеса
    TOPUP = "topup"      # ручное пополнение


class Transaction(Base):
    """
    Запись журнала монет (append-only).
    - amount со знаком: > 0 начисление, < 0 списание; ноль запрещён на уровне БД
    - kind из перечисления TransactionKind
    - meta: свободная ссылка на источник, например "wheel:42"
    """
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount <> 0", name="amount_nonzero"),
        Index("ix_transactions_user_time", "user_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # серверное время: стабильнее времени приложения
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    kind: Mapped[TransactionKind] = mapped_column(
        SAEnum(TransactionKind, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    meta: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)

    user: Mapped["User"] = relationship("User", back_populates="transactions")

    # -------------------- validators --------------------

    @validates("kind")
    def _coerce_kind(self, key: str, value: TransactionKind | str) -> TransactionKind:
        """
        Позволяет передавать как Enum, так и строковое значение ("refund"):
        приводим к Enum.
        """
        if isinstance(value, TransactionKind):
            return value
        try:
            return TransactionKind(value)
        except ValueError as e:
            raise ValueError(f"Invalid transaction kind: {value}") from e

    @validates("amount")
    def _validate_amount(self, key: str, value: int) -> int:
        if value is None or value == 0:
            raise ValueError("amount must be non-zero")
        return value

    def __repr__(self) -> str:  # pragma: no cover - для отладки
        return (
            f"<Transaction id={self.id!s} user_id={self.user_id!s} "
            f"kind={self.kind.value!r} amount={self.amount} meta={self.meta!r}>"
        )
