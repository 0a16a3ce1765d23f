# app/api/dependencies/dependencies.py
from __future__ import annotations

"""
Унифицированные зависимости для FastAPI-роутеров.
Контейнер создаётся в app.main.create_app и лежит в app.state.container:
роутеры получают сервисы только отсюда, без глобальных синглтонов.

Использование в роутерах:
    from app.api.dependencies.dependencies import get_wheel_service
    async def handler(wheels: WheelService = Depends(get_wheel_service)): ...
"""

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.container import Container
from app.domain.services.admin_actions import AdminActions
from app.domain.services.ledger import Ledger
from app.domain.services.wheel_service import WheelService


def get_container(request: Request) -> Container:
    return request.app.state.container


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    async with get_container(request).session_factory() as session:
        yield session


def get_wheel_service(request: Request) -> WheelService:
    return get_container(request).wheels


def get_ledger(request: Request) -> Ledger:
    return get_container(request).ledger


def get_admin_actions(request: Request) -> AdminActions:
    return get_container(request).admin


__all__ = [
    "get_container",
    "get_db",
    "get_wheel_service",
    "get_ledger",
    "get_admin_actions",
]
