# app/domain/services/wheel_service.py
from __future__ import annotations

"""
Фасад команд над колесом: create / join / start (+ abort и чтение).

Проверяет вход (ValidationError до любых обращений к БД), выполняет
мутацию в Store под замком колеса и просит движок запланировать/продвинуть
колесо. Ошибки: доменные исключения из app.core.exceptions; в HTTP их
превращает обработчик в app.main.
"""

import asyncio
import logging
from typing import Optional

from app.core.exceptions import InvalidStateError, WheelNotFound
from app.core.utils.validator import WheelValidator
from app.domain.services import broadcaster as events
from app.domain.services.broadcaster import EventBroadcaster
from app.domain.services.engine import EliminationEngine
from app.domain.services.sessions import wheel_room
from app.domain.services.wheel_store import WheelStore
from app.infrastructure.db.models.join import Join
from app.infrastructure.db.models.wheel import Wheel, WheelStatus

logger = logging.getLogger(__name__)


class WheelService:
    def __init__(
        self,
        store: WheelStore,
        engine: EliminationEngine,
        broadcaster: EventBroadcaster,
        *,
        single_active: bool = True,
    ) -> None:
        self.store = store
        self.engine = engine
        self.broadcaster = broadcaster
        self.single_active = single_active
        # проверка "нет другого PENDING" + вставка должны идти одна за другой
        self._create_lock = asyncio.Lock()

    # -------------------- commands --------------------

    async def create_wheel(
        self,
        host_id: str,
        entry_fee: int,
        max_players: Optional[int] = None,
        title: Optional[str] = None,
    ) -> Wheel:
        WheelValidator.validate_id(host_id, "host_id")
        WheelValidator.validate_entry_fee(entry_fee)
        WheelValidator.validate_max_players(max_players)

        async with self._create_lock:
            wheel = await self.store.create_wheel(
                host_id,
                entry_fee,
                max_players,
                title=title,
                single_active=self.single_active,
            )
            self.engine.schedule_auto_start(wheel.id)

        await self.broadcaster.publish(
            events.WHEEL_CREATED,
            {
                "wheel_id": wheel.id,
                "host_id": wheel.host_id,
                "title": wheel.title,
                "entry_fee": wheel.entry_fee,
                "max_players": wheel.max_players,
                "status": wheel.status.value,
            },
        )
        return wheel

    async def join_wheel(self, wheel_id: int, user_id: str) -> Join:
        WheelValidator.validate_wheel_id(wheel_id)
        WheelValidator.validate_id(user_id, "user_id")

        async with self.engine.lock_for(wheel_id):
            join = await self.store.join_wheel(wheel_id, user_id)
            joined = await self.store.count_joins(wheel_id)
            await self.broadcaster.publish(
                events.WHEEL_PLAYER_JOINED,
                {"wheel_id": wheel_id, "user_id": user_id, "players": joined},
                room=wheel_room(wheel_id),
            )

        wheel = await self.store.get_wheel(wheel_id)
        if wheel.max_players is not None and joined >= wheel.max_players:
            # колесо заполнилось: стартуем не дожидаясь таймера (если набран кворум)
            if not await self.engine.start_now(wheel_id, strict=False):
                logger.info("Wheel %s is full but cannot start yet", wheel_id)
        return join

    async def manual_start(self, wheel_id: int) -> Wheel:
        WheelValidator.validate_wheel_id(wheel_id)
        await self.engine.start_now(wheel_id)
        return await self.store.get_wheel(wheel_id)

    async def abort_wheel(self, wheel_id: int) -> list[str]:
        WheelValidator.validate_wheel_id(wheel_id)
        refunded = await self.engine.abort_and_refund(wheel_id)
        if refunded is None:
            wheel = await self.store.get_wheel(wheel_id)
            raise InvalidStateError(
                f"Wheel is {wheel.status.value}, only PENDING wheels can be aborted",
                wheel_id=wheel_id,
            )
        return refunded

    # -------------------- reads --------------------

    async def get_wheel(self, wheel_id: int) -> Wheel:
        WheelValidator.validate_wheel_id(wheel_id)
        return await self.store.get_wheel(wheel_id)

    async def list_wheels(
        self,
        status: Optional[WheelStatus] = None,
        *,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Wheel]:
        return await self.store.list_wheels(status, skip=skip, limit=limit)

    async def participants(self, wheel_id: int) -> list[Join]:
        WheelValidator.validate_wheel_id(wheel_id)
        if await self.store.find_wheel(wheel_id) is None:
            raise WheelNotFound(wheel_id)
        return await self.store.list_participants(wheel_id)
