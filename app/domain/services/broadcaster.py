# app/domain/services/broadcaster.py
from __future__ import annotations

"""
Рассылка событий жизненного цикла колеса подписчикам.

Особенности:
- доставка at-most-once, без подтверждений и без повторов/истории;
- опоздавший подписчик событие просто пропускает и сверяется через
  GET /wheels/{id};
- отправка каждому подписчику ограничена таймаутом; сломанная или
  зависшая сессия отключается и больше ничего не получает.
"""

import asyncio
import logging
from typing import Any, Optional

from app.domain.services.sessions import Sender, SessionRegistry

logger = logging.getLogger(__name__)

WHEEL_CREATED = "wheel:created"
WHEEL_PLAYER_JOINED = "wheel:player_joined"
WHEEL_STARTED = "wheel:started"
WHEEL_ELIMINATED = "wheel:eliminated"
WHEEL_FINISHED = "wheel:finished"
WHEEL_ABORTED = "wheel:aborted"


class EventBroadcaster:
    def __init__(self, registry: SessionRegistry, send_timeout: float = 2.0) -> None:
        self.registry = registry
        self.send_timeout = send_timeout

    async def publish(self, event: str, payload: dict[str, Any], room: Optional[str] = None) -> int:
        """
        Разослать событие комнате `room` (или всем сессиям, если room=None).
        Возвращает число успешных отправок.
        """
        targets = self.registry.members(room) if room is not None else self.registry.everyone()
        if not targets:
            return 0

        message = {"event": event, "data": payload}
        results = await asyncio.gather(
            *(self._deliver(sid, send, message) for sid, send in targets)
        )
        delivered = sum(1 for ok in results if ok)
        logger.debug("Event %s -> %s: %d/%d delivered", event, room or "*", delivered, len(targets))
        return delivered

    async def _deliver(self, session_id: str, send: Sender, message: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(send(message), timeout=self.send_timeout)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Dropping session %s after failed send: %r", session_id, e)
            self.registry.disconnect(session_id)
            return False
