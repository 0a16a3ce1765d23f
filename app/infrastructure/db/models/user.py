# app/infrastructure/db/models/user.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.core.utils.validator import UserValidator
from app.infrastructure.db.database import Base

if TYPE_CHECKING:
    from app.infrastructure.db.models.join import Join
    from app.infrastructure.db.models.transaction import Transaction


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    Игрок.
    - email хранится в нижнем регистре, уникальный
    - coins: баланс монет, в БД проверка coins >= 0
    - баланс меняется ТОЛЬКО через Ledger (см. app.domain.services.ledger)
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("coins >= 0", name="coins_nonneg"),
    )

    id: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False, default="")
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    coins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    # -------------------- Relations --------------------

    joins: Mapped[list["Join"]] = relationship(
        "Join",
        back_populates="user",
        lazy="noload",
    )

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    # -------------------- Factory --------------------

    @classmethod
    def create_instance(
        cls,
        email: str,
        name: str = "",
        is_admin: bool = False,
        id: str | None = None,
    ) -> "User":
        """
        Удобная фабрика: валидирует email. Начальный баланс всегда 0:
        стартовые монеты начисляются через Ledger, чтобы остался след в истории.
        """
        email = UserValidator.normalize_email(email)
        UserValidator.validate_email(email)
        UserValidator.validate_name(name)

        return cls(
            id=id or str(uuid.uuid4()),
            email=email,
            name=(name or "").strip(),
            is_admin=is_admin,
            coins=0,
        )

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        """
        Гарантирует хранение email в нижнем регистре независимо от способа установки.
        """
        return (value or "").strip().lower()

    def __repr__(self) -> str:  # pragma: no cover - для отладки
        return f"<User id={self.id!s} email={self.email!r} coins={self.coins}>"
