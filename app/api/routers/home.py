# app/api/routers/home.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.dependencies.dependencies import get_container
from app.core.container import Container
from app.domain.schemas.classes import MessageOut, InfoOut

router = APIRouter(tags=["Home"])


@router.get("/", response_model=MessageOut, response_model_exclude_none=True)
async def index() -> MessageOut:
    """
    Простой приветственный эндпойнт корня API.
    """
    return MessageOut(message="Welcome to the SpinWheel elimination game.")


@router.get("/info", response_model=InfoOut, response_model_exclude_none=True)
async def info(container: Container = Depends(get_container)) -> InfoOut:
    """
    Техническая информация о сервисе.
    (!)/health уже объявлен в app.main: чтобы не было конфликтов, здесь его не дублируем.
    """
    return InfoOut(
        app=str(container.settings.APP_NAME),
        version=str(container.settings.APP_VERSION),
    )
