# app/api/routers/users.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies.dependencies import get_admin_actions, get_ledger
from app.domain.schemas.classes import (
    BalanceOut,
    TopUpIn,
    TransactionItem,
    UserIn,
    UserOut,
)
from app.domain.services.admin_actions import AdminActions
from app.domain.services.ledger import Ledger

router = APIRouter(prefix="/users", tags=["users"])


# -------------------- helpers --------------------


def _validate_pagination(skip: int, limit: int) -> None:
    """
    Базовая валидация пагинации:
      - skip >= 0
      - 1 <= limit <= 500 (чтобы не уронить БД случайным запросом)
    """
    if skip < 0:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="skip must be >= 0")
    if limit <= 0 or limit > 500:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="limit must be in [1, 500]")


# -------------------- endpoints --------------------


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserIn,
    admin: AdminActions = Depends(get_admin_actions),
) -> UserOut:
    user = await admin.create_user(data.email, data.name, coins=data.coins)
    return UserOut.model_validate(user)


@router.get("", response_model=list[UserOut])
async def list_users(
    skip: int = 0,
    limit: int = 100,
    admin: AdminActions = Depends(get_admin_actions),
) -> list[UserOut]:
    _validate_pagination(skip, limit)
    users = await admin.list_users(skip=skip, limit=limit)
    return [UserOut.model_validate(u) for u in users]


@router.get("/{user_id}/balance", response_model=BalanceOut)
async def get_balance(
    user_id: str,
    ledger: Ledger = Depends(get_ledger),
) -> BalanceOut:
    return BalanceOut(user_id=user_id, balance=await ledger.balance(user_id))


@router.post("/{user_id}/topup", response_model=BalanceOut)
async def topup(
    user_id: str,
    data: TopUpIn,
    admin: AdminActions = Depends(get_admin_actions),
    ledger: Ledger = Depends(get_ledger),
) -> BalanceOut:
    """
    Пополнение баланса. Пишет запись TOPUP в журнал транзакций.
    """
    await admin.topup(user_id, data.amount)
    return BalanceOut(user_id=user_id, balance=await ledger.balance(user_id))


@router.get(
    "/{user_id}/transactions",
    response_model=list[TransactionItem],
    response_model_exclude_none=True,
)
async def list_transactions(
    user_id: str,
    skip: int = 0,
    limit: int = 100,
    admin: AdminActions = Depends(get_admin_actions),
    ledger: Ledger = Depends(get_ledger),
):
    """
    История транзакций игрока (новые первыми). По умолчанию: последние 100 записей.
    """
    _validate_pagination(skip, limit)
    await admin.get_user(user_id)
    items = await ledger.history(user_id, skip=skip, limit=limit)
    return [
        TransactionItem(
            id=t.id,
            timestamp=t.timestamp,
            amount=t.amount,
            kind=t.kind.value,
            meta=t.meta,
        )
        for t in items
    ]
