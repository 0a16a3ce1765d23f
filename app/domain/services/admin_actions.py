# app/domain/services/admin_actions.py
from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import ConflictError, UserNotFound
from app.core.utils.validator import WheelValidator
from app.domain.services.ledger import Ledger, Transfer
from app.infrastructure.db.models.transaction import Transaction, TransactionKind
from app.infrastructure.db.models.user import User


class AdminActions:
    """
    Сервис административных действий над игроками.
    Монеты начисляются только через Ledger (с записью в журнал).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], ledger: Ledger) -> None:
        self._session_factory = session_factory
        self._ledger = ledger

    # -------------------- Players --------------------

    async def create_user(
        self,
        email: str,
        name: str = "",
        *,
        coins: int = 0,
        is_admin: bool = False,
    ) -> User:
        """
        Создать игрока. Стартовый баланс (если > 0): транзакция TOPUP
        в той же транзакции БД, что и создание.
        """
        if coins:
            WheelValidator.validate_amount(coins)
        user = User.create_instance(email=email, name=name, is_admin=is_admin)

        try:
            async with self._session_factory() as db:
                async with db.begin():
                    db.add(user)
                    await db.flush()
                    if coins:
                        await self._ledger.apply(
                            db, [Transfer(user.id, coins, TransactionKind.TOPUP, "signup")]
                        )
        except IntegrityError as e:
            raise ConflictError("Email already registered", email=user.email) from e

        user.coins = coins
        return user

    async def get_user(self, user_id: str) -> User:
        async with self._session_factory() as db:
            user = await db.get(User, user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    async def find_by_email(self, email: str) -> Optional[User]:
        async with self._session_factory() as db:
            return await db.scalar(select(User).where(User.email == (email or "").strip().lower()))

    async def list_users(self, *, skip: int = 0, limit: int = 100) -> Sequence[User]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(User).order_by(User.created_at, User.email).offset(skip).limit(limit)
            )
            return result.scalars().all()

    # -------------------- Credits --------------------

    async def topup(self, user_id: str, amount: int, meta: Optional[str] = None) -> Transaction:
        """
        Начислить игроку монеты (пополнение баланса).
        """
        WheelValidator.validate_amount(amount)
        return await self._ledger.transfer(user_id, amount, TransactionKind.TOPUP, meta or "admin")
