# app/api/routers/wheels.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.dependencies.dependencies import get_wheel_service
from app.domain.schemas.classes import (
    AbortOut,
    JoinIn,
    JoinOut,
    ParticipantOut,
    WheelCreateIn,
    WheelOut,
)
from app.domain.services.wheel_service import WheelService
from app.infrastructure.db.models.wheel import WheelStatus

router = APIRouter(prefix="/wheels", tags=["wheels"])


# -------------------- helpers --------------------

def _parse_status(value: Optional[str]) -> Optional[WheelStatus]:
    if value is None:
        return None
    try:
        return WheelStatus(value.strip().upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"status must be one of {[s.value for s in WheelStatus]}",
        )


# -------------------- commands --------------------

@router.post("", response_model=WheelOut, status_code=status.HTTP_201_CREATED)
async def create_wheel(
    data: WheelCreateIn,
    wheels: WheelService = Depends(get_wheel_service),
) -> WheelOut:
    """
    Создать колесо (хост/админ). Автостарт взводится сразу.
    При политике "одно активное колесо" второе PENDING-колесо → 409.
    """
    wheel = await wheels.create_wheel(
        data.host_id,
        data.entry_fee,
        data.max_players,
        title=data.title,
    )
    return WheelOut.from_wheel(wheel)


@router.post("/{wheel_id}/join", response_model=JoinOut)
async def join_wheel(
    wheel_id: int,
    data: JoinIn,
    wheels: WheelService = Depends(get_wheel_service),
) -> JoinOut:
    """
    Вступить в колесо: списание взноса и запись участия атомарно.
    404: нет колеса/игрока, 409: не PENDING / уже в игре / мест нет,
    402: не хватает монет.
    """
    join = await wheels.join_wheel(wheel_id, data.user_id)
    return JoinOut(wheel_id=join.wheel_id, user_id=join.user_id)


@router.post("/{wheel_id}/start", response_model=WheelOut)
async def start_wheel(
    wheel_id: int,
    wheels: WheelService = Depends(get_wheel_service),
) -> WheelOut:
    wheel = await wheels.manual_start(wheel_id)
    return WheelOut.from_wheel(wheel)


@router.post("/{wheel_id}/abort", response_model=AbortOut)
async def abort_wheel(
    wheel_id: int,
    wheels: WheelService = Depends(get_wheel_service),
) -> AbortOut:
    refunded = await wheels.abort_wheel(wheel_id)
    return AbortOut(wheel_id=wheel_id, status=WheelStatus.ABORTED.value, refunded=refunded)


# -------------------- reads --------------------

@router.get("", response_model=list[WheelOut])
async def list_wheels(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    skip: int = 0,
    limit: int = 100,
    wheels: WheelService = Depends(get_wheel_service),
) -> list[WheelOut]:
    if skip < 0 or limit <= 0 or limit > 500:
        raise HTTPException(status_code=422, detail="skip must be >= 0, limit in [1, 500]")
    items = await wheels.list_wheels(_parse_status(status_filter), skip=skip, limit=limit)
    return [WheelOut.from_wheel(w) for w in items]


@router.get("/{wheel_id}", response_model=WheelOut)
async def get_wheel(
    wheel_id: int,
    wheels: WheelService = Depends(get_wheel_service),
) -> WheelOut:
    """
    Полное состояние колеса: клиенты сверяются с ним после пропущенных событий.
    """
    return WheelOut.from_wheel(await wheels.get_wheel(wheel_id))


@router.get("/{wheel_id}/participants", response_model=list[ParticipantOut])
async def list_participants(
    wheel_id: int,
    wheels: WheelService = Depends(get_wheel_service),
) -> list[ParticipantOut]:
    joins = await wheels.participants(wheel_id)
    return [ParticipantOut.from_join(j) for j in joins]
