# app/domain/services/ledger.py
from __future__ import annotations

"""
Ledger: атомарные изменения баланса монет + журнал транзакций.

Правила:
- баланс проверяется и меняется ОДНИМ условным UPDATE
  (coins = coins + delta WHERE coins + delta >= 0), поэтому отрицательный
  баланс не наблюдается ни в какой момент, даже без FOR UPDATE (SQLite);
- запись Transaction добавляется в ту же транзакцию БД, что и UPDATE:
  либо применились оба, либо ни одно;
- пакет переводов (например, возврат взносов N игрокам): один
  all-or-nothing блок.

Использование:
    await ledger.transfer(user_id, -500, TransactionKind.ENTRY, meta="wheel:1")

    async with session.begin():
        await ledger.apply(session, [Transfer(...), Transfer(...)])
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import InsufficientFundsError, UserNotFound, ValidationError
from app.infrastructure.db.models.transaction import Transaction, TransactionKind
from app.infrastructure.db.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transfer:
    user_id: str
    delta: int
    kind: TransactionKind
    meta: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.delta, bool) or not isinstance(self.delta, int):
            raise ValidationError("delta must be an integer", delta=self.delta)
        if self.delta == 0:
            raise ValidationError("delta cannot be zero", user_id=self.user_id)


class Ledger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -------------------- inside a caller-owned transaction --------------------

    async def apply(self, db: AsyncSession, transfers: Sequence[Transfer]) -> list[Transaction]:
        """
        ВНИМАНИЕ: транзакцию НЕ открываем здесь.
        Ожидаем, что вызывающая функция уже находится внутри `async with db.begin():`
        любое исключение откатит весь пакет вместе с изменениями вызывающего.
        """
        records: list[Transaction] = []
        for t in transfers:
            res = await db.execute(
                update(User)
                .where(User.id == t.user_id, User.coins + t.delta >= 0)
                .values(coins=User.coins + t.delta)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                balance = await db.scalar(select(User.coins).where(User.id == t.user_id))
                if balance is None:
                    raise UserNotFound(t.user_id)
                raise InsufficientFundsError(t.user_id, balance=balance, delta=t.delta)

            txn = Transaction(user_id=t.user_id, amount=t.delta, kind=t.kind, meta=t.meta)
            db.add(txn)
            records.append(txn)

        await db.flush()
        return records

    # -------------------- self-contained units --------------------

    async def transfer_many(self, transfers: Sequence[Transfer]) -> list[Transaction]:
        async with self._session_factory() as db:
            async with db.begin():
                records = await self.apply(db, transfers)
        logger.info("Ledger applied %d transfer(s)", len(records))
        return records

    async def transfer(
        self,
        user_id: str,
        delta: int,
        kind: TransactionKind,
        meta: Optional[str] = None,
    ) -> Transaction:
        """
        Атомарно изменить баланс на `delta` и записать транзакцию типа `kind`.
        Бросает InsufficientFundsError, если списание уводит баланс в минус.
        """
        records = await self.transfer_many([Transfer(user_id, delta, kind, meta)])
        return records[0]

    # -------------------- read-only views --------------------

    async def balance(self, user_id: str) -> int:
        async with self._session_factory() as db:
            coins = await db.scalar(select(User.coins).where(User.id == user_id))
        if coins is None:
            raise UserNotFound(user_id)
        return coins

    async def history(
        self,
        user_id: str,
        *,
        meta: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Transaction]:
        """
        История транзакций игрока, новые первыми. Фильтр по meta (например, "wheel:7").
        """
        if skip < 0:
            raise ValidationError("skip must be >= 0")
        if limit <= 0 or limit > 500:
            raise ValidationError("limit must be in [1, 500]")

        stmt = select(Transaction).where(Transaction.user_id == user_id)
        if meta:
            stmt = stmt.where(Transaction.meta == meta)
        stmt = stmt.order_by(desc(Transaction.timestamp), desc(Transaction.id)).offset(skip).limit(limit)

        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())
