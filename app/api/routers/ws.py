# app/api/routers/ws.py
from __future__ import annotations

"""
WebSocket-подписка на события колёс.

Клиент шлёт:
    {"action": "subscribe",   "wheel_id": 7}
    {"action": "unsubscribe", "wheel_id": 7}
и получает кадры {"event": "wheel:eliminated", "data": {...}}.
wheel:created приходит всем подключённым, остальные события: комнате колеса.
"""

import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.container import Container
from app.domain.services.sessions import wheel_room

router = APIRouter(tags=["ws"])
logger = logging.getLogger(__name__)

_ACTIONS = {"subscribe", "unsubscribe"}
_BAD_FRAME = {"event": "error", "data": {"detail": "expected {action: subscribe|unsubscribe, wheel_id: int}"}}


@router.websocket("/ws")
async def wheel_events(websocket: WebSocket) -> None:
    container: Container = websocket.app.state.container
    registry = container.registry

    await websocket.accept()
    session_id = uuid.uuid4().hex
    registry.connect(session_id, websocket.send_json)
    await websocket.send_json({"event": "session:ready", "data": {"session_id": session_id}})

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                # не JSON: отвечаем ошибкой, соединение не рвём
                await websocket.send_json(_BAD_FRAME)
                continue

            action = message.get("action") if isinstance(message, dict) else None
            wheel_id = message.get("wheel_id") if isinstance(message, dict) else None

            if action not in _ACTIONS or not isinstance(wheel_id, int) or isinstance(wheel_id, bool):
                await websocket.send_json(_BAD_FRAME)
                continue

            room = wheel_room(wheel_id)
            if action == "subscribe":
                registry.join(session_id, room)
                await websocket.send_json({"event": "subscribed", "data": {"wheel_id": wheel_id}})
            else:
                registry.leave(session_id, room)
                await websocket.send_json({"event": "unsubscribed", "data": {"wheel_id": wheel_id}})
    except WebSocketDisconnect:
        logger.debug("Session %s closed by client", session_id)
    finally:
        registry.disconnect(session_id)
