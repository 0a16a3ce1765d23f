# app/domain/services/engine.py
from __future__ import annotations

"""
Elimination Engine: таймерная машина состояний колеса.

Состояния на колесо:
    SCHEDULED_START -> {ABORTED, RUNNING}
    RUNNING -> {ELIMINATING (петля), FINISHED}

Таймеры хранятся как asyncio-задачи в реестре по id колеса. Запись в реестре
живёт ровно столько, сколько колесо не в терминальном статусе:
создаётся при планировании автостарта, освобождается cancel().

Все изменения одного колеса (join, старт, отмена, выбывание, финиш)
идут под asyncio.Lock этого колеса. Разные колёса не блокируют друг друга.
Каждый колбэк таймера сначала перечитывает статус: так закрывается окно
между "решили отменить" и "таймер уже сработал".
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import InternalConsistencyError, InvalidStateError, WheelNotFound
from app.domain.services import broadcaster as events
from app.domain.services.broadcaster import EventBroadcaster
from app.domain.services.payout import PayoutFunction, fixed_payout, payout_from_settings
from app.domain.services.sessions import wheel_room
from app.domain.services.wheel_store import Clock, WheelStore, utcnow
from app.infrastructure.db.config import Settings
from app.infrastructure.db.models.wheel import Wheel, WheelStatus

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    min_quorum: int = 3
    auto_start_delay: float = 180.0
    tick: float = 5.0
    payout: PayoutFunction = field(default_factory=lambda: fixed_payout(100))

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            min_quorum=settings.MIN_QUORUM,
            auto_start_delay=settings.AUTO_START_DELAY_SEC,
            tick=settings.ELIMINATION_TICK_SEC,
            payout=payout_from_settings(settings),
        )


@dataclass
class _WheelRuntime:
    wheel_id: int
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    start_task: Optional[asyncio.Task] = None
    loop_task: Optional[asyncio.Task] = None

    def tasks(self) -> list[asyncio.Task]:
        return [t for t in (self.start_task, self.loop_task) if t is not None]


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _as_utc(value: datetime) -> datetime:
    # SQLite возвращает naive datetime даже для DateTime(timezone=True)
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class EliminationEngine:
    def __init__(
        self,
        store: WheelStore,
        broadcaster: EventBroadcaster,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.config = config or EngineConfig()
        self._rng = rng or random.Random()
        self._clock = clock
        self._runtimes: dict[int, _WheelRuntime] = {}
        # общий замок для колёс без записи в реестре (терминальные/чужие)
        self._orphan_lock = asyncio.Lock()

    # -------------------- registry --------------------

    def _runtime(self, wheel_id: int) -> _WheelRuntime:
        rt = self._runtimes.get(wheel_id)
        if rt is None:
            rt = _WheelRuntime(wheel_id)
            self._runtimes[wheel_id] = rt
        return rt

    def lock_for(self, wheel_id: int) -> asyncio.Lock:
        rt = self._runtimes.get(wheel_id)
        return rt.lock if rt is not None else self._orphan_lock

    def is_scheduled(self, wheel_id: int) -> bool:
        return wheel_id in self._runtimes

    def cancel(self, wheel_id: int) -> bool:
        """
        Останавливает все таймеры колеса и освобождает его запись в реестре.
        Идемпотентно: повторный вызов ничего не делает и возвращает False.
        Текущую задачу (если cancel вызван из её же колбэка) не трогаем:
        она завершится сама.
        """
        rt = self._runtimes.pop(wheel_id, None)
        if rt is None:
            return False
        current = _current_task()
        for task in rt.tasks():
            if task is not current and not task.done():
                task.cancel()
        logger.info("Wheel %s: timers cancelled", wheel_id)
        return True

    async def shutdown(self) -> None:
        """Остановить все таймеры, не трогая состояние колёс в БД."""
        tasks = [t for rt in self._runtimes.values() for t in rt.tasks() if not t.done()]
        self._runtimes.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Engine stopped, %d timer(s) cancelled", len(tasks))

    # -------------------- auto start --------------------

    def schedule_auto_start(self, wheel_id: int, delay: Optional[float] = None) -> asyncio.Task:
        """
        Взводит одноразовый дедлайн автостарта. Повторный вызов перевзводит таймер.
        """
        delay = self.config.auto_start_delay if delay is None else max(0.0, delay)
        rt = self._runtime(wheel_id)
        if rt.start_task is not None and not rt.start_task.done():
            rt.start_task.cancel()
        rt.start_task = asyncio.create_task(
            self._auto_start_after(wheel_id, delay),
            name=f"wheel-{wheel_id}-autostart",
        )
        logger.info("Wheel %s: auto-start in %.1fs", wheel_id, delay)
        return rt.start_task

    async def _auto_start_after(self, wheel_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        while True:
            try:
                await self.run_start_deadline(wheel_id)
                return
            except SQLAlchemyError:
                logger.warning(
                    "Wheel %s: auto-start failed to reach storage, retrying in %.1fs",
                    wheel_id, self.config.tick, exc_info=True,
                )
                await asyncio.sleep(self.config.tick)

    async def run_start_deadline(self, wheel_id: int) -> Optional[WheelStatus]:
        """
        Колбэк дедлайна автостарта. Если колесо уже не PENDING (стартовали
        вручную или отменили), ничего не делаем. Меньше кворума означает отмену
        с возвратом, иначе старт и цикл выбывания. Возвращает новый статус или None.
        """
        async with self.lock_for(wheel_id):
            wheel = await self.store.find_wheel(wheel_id)
            if wheel is None or wheel.status != WheelStatus.PENDING:
                logger.info("Wheel %s: start deadline is a no-op", wheel_id)
                return None

            active = await self.store.find_active_participants(wheel_id)
            if len(active) < self.config.min_quorum:
                logger.info(
                    "Wheel %s: %d player(s) below quorum %d, aborting",
                    wheel_id, len(active), self.config.min_quorum,
                )
                refunded = await self._abort_locked(wheel_id)
                return WheelStatus.ABORTED if refunded is not None else None

            started = await self._start_locked(wheel, len(active))
            return WheelStatus.RUNNING if started else None

    # -------------------- manual / fill start --------------------

    async def start_now(self, wheel_id: int, *, strict: bool = True) -> bool:
        """
        Ручной старт (и старт по заполнению). Та же дисциплина, что у автостарта:
        замок колеса, CAS PENDING -> RUNNING, отмена ожидающего таймера.
        strict=False: вместо InvalidStateError вернуть False.
        """
        async with self.lock_for(wheel_id):
            wheel = await self.store.find_wheel(wheel_id)
            if wheel is None:
                raise WheelNotFound(wheel_id)

            problem: Optional[str] = None
            active: list[str] = []
            if wheel.status != WheelStatus.PENDING:
                problem = f"Wheel is {wheel.status.value}, not PENDING"
            else:
                active = await self.store.find_active_participants(wheel_id)
                if len(active) < self.config.min_quorum:
                    problem = f"Need at least {self.config.min_quorum} players, got {len(active)}"

            if problem is None and await self._start_locked(wheel, len(active)):
                return True
            if strict:
                raise InvalidStateError(problem or "Wheel already started", wheel_id=wheel_id)
            return False

    async def _start_locked(self, wheel: Wheel, players: int) -> bool:
        starts_at = await self.store.start_wheel(wheel.id)
        if starts_at is None:
            return False

        rt = self._runtime(wheel.id)
        start_task, rt.start_task = rt.start_task, None
        if start_task is not None and start_task is not _current_task() and not start_task.done():
            start_task.cancel()

        logger.info("Wheel %s started with %d player(s)", wheel.id, players)
        await self.broadcaster.publish(
            events.WHEEL_STARTED,
            {"wheel_id": wheel.id, "starts_at": starts_at.isoformat(), "players": players},
            room=wheel_room(wheel.id),
        )
        self._start_loop(wheel.id)
        return True

    # -------------------- abort --------------------

    async def abort_and_refund(self, wheel_id: int) -> Optional[list[str]]:
        """
        Отмена колеса с возвратом взносов. Только первый вызов, заставший
        PENDING, делает возврат; остальные возвращают None.
        """
        async with self.lock_for(wheel_id):
            return await self._abort_locked(wheel_id)

    async def _abort_locked(self, wheel_id: int) -> Optional[list[str]]:
        refunded = await self.store.abort_and_refund(wheel_id)
        if refunded is None:
            return None
        self.cancel(wheel_id)
        await self.broadcaster.publish(
            events.WHEEL_ABORTED,
            {"wheel_id": wheel_id, "refunded": refunded},
            room=wheel_room(wheel_id),
        )
        return refunded

    # -------------------- elimination loop --------------------

    def _start_loop(self, wheel_id: int) -> asyncio.Task:
        rt = self._runtime(wheel_id)
        if rt.loop_task is not None and not rt.loop_task.done():
            return rt.loop_task
        rt.loop_task = asyncio.create_task(
            self._elimination_loop(wheel_id),
            name=f"wheel-{wheel_id}-elimination",
        )
        return rt.loop_task

    async def _elimination_loop(self, wheel_id: int) -> None:
        while True:
            await asyncio.sleep(self.config.tick)
            try:
                if await self.tick(wheel_id):
                    return
            except SQLAlchemyError:
                # "не смогли прочитать" != "никого не осталось": пробуем на следующем тике
                logger.warning(
                    "Wheel %s: elimination tick failed, retrying next tick", wheel_id, exc_info=True
                )
            except InternalConsistencyError:
                logger.error("Wheel %s: elimination loop stopped", wheel_id, exc_info=True)
                self.cancel(wheel_id)
                return

    async def tick(self, wheel_id: int) -> bool:
        """
        Один тик цикла выбывания. True: цикл должен завершиться.
        """
        async with self.lock_for(wheel_id):
            wheel = await self.store.find_wheel(wheel_id)
            if wheel is None or wheel.status != WheelStatus.RUNNING:
                logger.info("Wheel %s: no longer RUNNING, stopping loop", wheel_id)
                self.cancel(wheel_id)
                return True

            active = await self.store.find_active_participants(wheel_id)
            if not active:
                raise InternalConsistencyError(
                    "Running wheel has no active participants", wheel_id=wheel_id
                )

            if len(active) == 1:
                await self._finish_locked(wheel, active[0])
                return True

            eliminated = self._rng.choice(active)
            eliminated_at = await self.store.mark_eliminated(wheel_id, eliminated)
            if eliminated_at is not None:
                logger.info(
                    "Wheel %s: eliminated %s, %d remaining", wheel_id, eliminated, len(active) - 1
                )
                await self.broadcaster.publish(
                    events.WHEEL_ELIMINATED,
                    {
                        "wheel_id": wheel_id,
                        "eliminated": eliminated,
                        "eliminated_at": eliminated_at.isoformat(),
                        "remaining": len(active) - 1,
                    },
                    room=wheel_room(wheel_id),
                )
            return False

    async def _finish_locked(self, wheel: Wheel, winner_id: str) -> None:
        players = len(wheel.joins)
        pot = wheel.entry_fee * players
        payout = max(0, int(self.config.payout(pot, players)))

        finished_at = await self.store.finish_wheel(wheel.id, winner_id, payout)
        self.cancel(wheel.id)
        if finished_at is None:
            return

        logger.info("Wheel %s finished, winner %s", wheel.id, winner_id)
        await self.broadcaster.publish(
            events.WHEEL_FINISHED,
            {
                "wheel_id": wheel.id,
                "winner": winner_id,
                "payout": payout,
                "finished_at": finished_at.isoformat(),
            },
            room=wheel_room(wheel.id),
        )

    # -------------------- recovery --------------------

    async def recover(self) -> dict[str, Any]:
        """
        После рестарта процесса: перевзвести автостарт для PENDING-колёс
        (с остатком задержки от created_at) и продолжить цикл RUNNING-колёс.
        """
        now = self._clock()
        pending = await self.store.list_wheels(WheelStatus.PENDING, limit=None)
        for wheel in pending:
            elapsed = (now - _as_utc(wheel.created_at)).total_seconds()
            self.schedule_auto_start(wheel.id, self.config.auto_start_delay - elapsed)

        running = await self.store.list_wheels(WheelStatus.RUNNING, limit=None)
        for wheel in running:
            self._start_loop(wheel.id)

        if pending or running:
            logger.info(
                "Recovered %d pending and %d running wheel(s)", len(pending), len(running)
            )
        return {"pending": [w.id for w in pending], "running": [w.id for w in running]}
