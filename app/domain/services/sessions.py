# app/domain/services/sessions.py
from __future__ import annotations

"""
Реестр подключённых наблюдателей и их "комнат".

Сессия: одно подключение (например, WebSocket). Комната колеса:
"wheel:<id>". Отключение молча снимает сессию со всех комнат.
"""

import logging
from typing import Any, Awaitable, Callable

from app.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)

Sender = Callable[[dict[str, Any]], Awaitable[None]]


def wheel_room(wheel_id: int) -> str:
    return f"wheel:{wheel_id}"


class SessionRegistry:
    def __init__(self) -> None:
        self._senders: dict[str, Sender] = {}
        self._rooms: dict[str, set[str]] = {}
        self._memberships: dict[str, set[str]] = {}

    def connect(self, session_id: str, send: Sender) -> None:
        self._senders[session_id] = send
        self._memberships.setdefault(session_id, set())
        logger.debug("Session %s connected", session_id)

    def disconnect(self, session_id: str) -> None:
        self._senders.pop(session_id, None)
        for room in self._memberships.pop(session_id, set()):
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(session_id)
            if not members:
                del self._rooms[room]
        logger.debug("Session %s disconnected", session_id)

    def join(self, session_id: str, room: str) -> None:
        if session_id not in self._senders:
            raise NotFoundError(f"Session {session_id} is not connected")
        self._rooms.setdefault(room, set()).add(session_id)
        self._memberships[session_id].add(room)

    def leave(self, session_id: str, room: str) -> None:
        self._memberships.get(session_id, set()).discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(session_id)
            if not members:
                del self._rooms[room]

    def is_connected(self, session_id: str) -> bool:
        return session_id in self._senders

    def rooms_of(self, session_id: str) -> set[str]:
        return set(self._memberships.get(session_id, ()))

    def members(self, room: str) -> list[tuple[str, Sender]]:
        return [
            (sid, self._senders[sid])
            for sid in sorted(self._rooms.get(room, ()))
            if sid in self._senders
        ]

    def everyone(self) -> list[tuple[str, Sender]]:
        return list(self._senders.items())

    def __len__(self) -> int:
        return len(self._senders)
