# app/domain/services/wheel_store.py
from __future__ import annotations

"""
Wheel Store: источник истины по колёсам и участникам.

Каждая изменяющая операция: одна транзакция БД (`async with db.begin()`).
Смена статуса идёт через compare-and-set UPDATE ... WHERE status = :expected,
поэтому "опоздавший" участник гонки (таймер vs ручной старт) ничего не меняет.
Денежные шаги (взнос, возврат, выплата) идут через Ledger.apply в той же
транзакции, что и изменение колеса/участия.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import (
    ConflictError,
    InvalidStateError,
    UserNotFound,
    WheelNotFound,
)
from app.domain.services.ledger import Ledger, Transfer
from app.infrastructure.db.models.join import Join
from app.infrastructure.db.models.transaction import TransactionKind
from app.infrastructure.db.models.user import User
from app.infrastructure.db.models.wheel import Wheel, WheelStatus, can_transition

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def wheel_meta(wheel_id: int) -> str:
    return f"wheel:{wheel_id}"


class WheelStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: Ledger,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._clock = clock

    # -------------------- reads --------------------

    async def find_wheel(self, wheel_id: int) -> Optional[Wheel]:
        async with self._session_factory() as db:
            return await db.get(Wheel, wheel_id, populate_existing=True)

    async def get_wheel(self, wheel_id: int) -> Wheel:
        wheel = await self.find_wheel(wheel_id)
        if wheel is None:
            raise WheelNotFound(wheel_id)
        return wheel

    async def list_wheels(
        self,
        status: Optional[WheelStatus] = None,
        *,
        skip: int = 0,
        limit: Optional[int] = 100,
    ) -> list[Wheel]:
        stmt = select(Wheel)
        if status is not None:
            stmt = stmt.where(Wheel.status == status)
        stmt = stmt.order_by(Wheel.id.desc()).offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def find_active_participants(self, wheel_id: int) -> list[str]:
        """
        Активные (не выбывшие) игроки колеса в порядке вступления:
        именно из этой последовательности делается случайный выбор.
        """
        stmt = (
            select(Join.user_id)
            .where(Join.wheel_id == wheel_id, Join.eliminated_at.is_(None))
            .order_by(Join.joined_at, Join.id)
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def list_participants(self, wheel_id: int) -> list[Join]:
        """Полная история участия (включая выбывших): для API и аудита."""
        stmt = select(Join).where(Join.wheel_id == wheel_id).order_by(Join.joined_at, Join.id)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def count_joins(self, wheel_id: int) -> int:
        async with self._session_factory() as db:
            return await db.scalar(
                select(func.count(Join.id)).where(Join.wheel_id == wheel_id)
            ) or 0

    # -------------------- create / join --------------------

    async def create_wheel(
        self,
        host_id: str,
        entry_fee: int,
        max_players: Optional[int] = None,
        *,
        title: Optional[str] = None,
        single_active: bool = True,
    ) -> Wheel:
        async with self._session_factory() as db:
            async with db.begin():
                host = await db.get(User, host_id)
                if host is None:
                    raise UserNotFound(host_id)

                if single_active:
                    pending = await db.scalar(
                        select(Wheel.id).where(Wheel.status == WheelStatus.PENDING).limit(1)
                    )
                    if pending is not None:
                        raise ConflictError(
                            "Another wheel is already pending", pending_wheel_id=pending
                        )

                wheel = Wheel(
                    host_id=host_id,
                    title=title,
                    entry_fee=entry_fee,
                    max_players=max_players,
                    status=WheelStatus.PENDING,
                    created_at=self._clock(),
                    joins=[],
                )
                db.add(wheel)
                await db.flush()

        logger.info("Created wheel %s (fee=%s, max=%s)", wheel.id, entry_fee, max_players)
        return wheel

    async def join_wheel(self, wheel_id: int, user_id: str) -> Join:
        """
        Взнос и создание Join идут одной транзакцией: Join без списания
        (и списание без Join) невозможны.
        """
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    wheel = await db.scalar(
                        select(Wheel).where(Wheel.id == wheel_id).with_for_update()
                    )
                    if wheel is None:
                        raise WheelNotFound(wheel_id)
                    if wheel.status != WheelStatus.PENDING:
                        raise InvalidStateError(
                            "Wheel not open for joins",
                            wheel_id=wheel_id,
                            status=wheel.status.value,
                        )
                    if await db.get(User, user_id) is None:
                        raise UserNotFound(user_id)

                    already = await db.scalar(
                        select(Join.id).where(Join.wheel_id == wheel_id, Join.user_id == user_id)
                    )
                    if already is not None:
                        raise ConflictError("User already joined this wheel", wheel_id=wheel_id, user_id=user_id)

                    if wheel.max_players is not None:
                        taken = await db.scalar(
                            select(func.count(Join.id)).where(Join.wheel_id == wheel_id)
                        )
                        if taken >= wheel.max_players:
                            raise ConflictError("Wheel is full", wheel_id=wheel_id, max_players=wheel.max_players)

                    await self._ledger.apply(
                        db,
                        [Transfer(user_id, -wheel.entry_fee, TransactionKind.ENTRY, wheel_meta(wheel_id))],
                    )

                    join = Join(wheel_id=wheel_id, user_id=user_id, joined_at=self._clock())
                    db.add(join)
                    await db.flush()
        except IntegrityError as e:
            # уникальность (wheel_id, user_id) на уровне БД: последний рубеж
            raise ConflictError("User already joined this wheel", wheel_id=wheel_id, user_id=user_id) from e

        logger.info("User %s joined wheel %s", user_id, wheel_id)
        return join

    # -------------------- transitions --------------------

    async def _cas_status(
        self,
        db: AsyncSession,
        wheel_id: int,
        expected: WheelStatus,
        target: WheelStatus,
        **fields: Any,
    ) -> bool:
        if not can_transition(expected, target):
            raise InvalidStateError(
                f"Transition {expected.value} -> {target.value} is not allowed",
                wheel_id=wheel_id,
            )
        res = await db.execute(
            update(Wheel)
            .where(Wheel.id == wheel_id, Wheel.status == expected)
            .values(status=target, **fields)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def set_wheel_status(
        self,
        wheel_id: int,
        expected: WheelStatus,
        target: WheelStatus,
        **fields: Any,
    ) -> bool:
        """
        Переход expected -> target. False, если статус уже не expected
        (гонку выиграл кто-то другой): ничего не меняется.
        """
        async with self._session_factory() as db:
            async with db.begin():
                changed = await self._cas_status(db, wheel_id, expected, target, **fields)
        if changed:
            logger.info("Wheel %s: %s -> %s", wheel_id, expected.value, target.value)
        return changed

    async def start_wheel(self, wheel_id: int) -> Optional[datetime]:
        """PENDING -> RUNNING со штампом starts_at. None, если колесо уже не PENDING."""
        starts_at = self._clock()
        changed = await self.set_wheel_status(
            wheel_id, WheelStatus.PENDING, WheelStatus.RUNNING, starts_at=starts_at
        )
        return starts_at if changed else None

    async def mark_eliminated(self, wheel_id: int, user_id: str) -> Optional[datetime]:
        """
        Проставляет eliminated_at активному участнику, пока колесо RUNNING.
        None: если участник уже выбыл или колесо не в игре.
        """
        eliminated_at = self._clock()
        async with self._session_factory() as db:
            async with db.begin():
                running = await db.scalar(
                    select(Wheel.id)
                    .where(Wheel.id == wheel_id, Wheel.status == WheelStatus.RUNNING)
                    .with_for_update()
                )
                if running is None:
                    return None
                res = await db.execute(
                    update(Join)
                    .where(
                        Join.wheel_id == wheel_id,
                        Join.user_id == user_id,
                        Join.eliminated_at.is_(None),
                    )
                    .values(eliminated_at=eliminated_at)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    return None
        return eliminated_at

    async def abort_and_refund(self, wheel_id: int) -> Optional[list[str]]:
        """
        PENDING -> ABORTED + возврат взноса каждому активному участнику,
        всё одной транзакцией. None: колесо уже не PENDING (возврат не делается).
        """
        async with self._session_factory() as db:
            async with db.begin():
                wheel = await db.scalar(
                    select(Wheel).where(Wheel.id == wheel_id).with_for_update()
                )
                if wheel is None:
                    raise WheelNotFound(wheel_id)

                if not await self._cas_status(db, wheel_id, WheelStatus.PENDING, WheelStatus.ABORTED):
                    return None

                result = await db.execute(
                    select(Join.user_id)
                    .where(Join.wheel_id == wheel_id, Join.eliminated_at.is_(None))
                    .order_by(Join.id)
                )
                refunded = list(result.scalars().all())
                if refunded:
                    meta = wheel_meta(wheel_id)
                    await self._ledger.apply(
                        db,
                        [Transfer(uid, wheel.entry_fee, TransactionKind.REFUND, meta) for uid in refunded],
                    )

        logger.info("Wheel %s aborted, refunded %d player(s)", wheel_id, len(refunded))
        return refunded

    async def finish_wheel(self, wheel_id: int, winner_id: str, payout: int) -> Optional[datetime]:
        """
        RUNNING -> FINISHED с winner_id/finished_at и выплатой победителю
        в одной транзакции. None: колесо уже не RUNNING.
        """
        finished_at = self._clock()
        async with self._session_factory() as db:
            async with db.begin():
                changed = await self._cas_status(
                    db,
                    wheel_id,
                    WheelStatus.RUNNING,
                    WheelStatus.FINISHED,
                    winner_id=winner_id,
                    finished_at=finished_at,
                )
                if not changed:
                    return None
                if payout > 0:
                    await self._ledger.apply(
                        db,
                        [Transfer(winner_id, payout, TransactionKind.WIN, wheel_meta(wheel_id))],
                    )

        logger.info("Wheel %s finished, winner %s paid %d", wheel_id, winner_id, payout)
        return finished_at
