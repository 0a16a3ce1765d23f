# app/domain/schemas/classes.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================ Users / Ledger ============================

class UserIn(BaseModel):
    email: str = Field(..., min_length=3)
    name: str = Field(default="", max_length=64)
    coins: int = Field(default=0, ge=0, description="Стартовый баланс (>= 0)")

    @field_validator("email")
    @classmethod
    def _lowercase_email(cls, v: str) -> str:
        return v.strip().lower()


class UserOut(BaseModel):
    id: str
    email: str
    name: str
    coins: int = Field(..., ge=0)
    is_admin: bool = False

    model_config = ConfigDict(from_attributes=True)


class TopUpIn(BaseModel):
    amount: int = Field(..., gt=0, description="Сумма пополнения (> 0)")


class BalanceOut(BaseModel):
    user_id: str
    balance: int = Field(..., ge=0)


class TransactionItem(BaseModel):
    id: str
    timestamp: datetime
    amount: int
    kind: str  # Enum сериализуется как его value
    meta: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ============================ Wheels ============================

class WheelCreateIn(BaseModel):
    """
    Создание колеса. Поддерживает алиасы из старого клиента:
    `owner_id` → `host_id`, `entry_fee`/`entryFee`, `maxPlayers`.
    """
    host_id: str = Field(..., min_length=1)
    entry_fee: int = Field(..., gt=0)
    max_players: Optional[int] = Field(default=None, ge=2)
    title: Optional[str] = Field(default=None, max_length=120)

    @model_validator(mode="before")
    def accept_legacy_aliases(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            for legacy, name in (
                ("owner_id", "host_id"),
                ("hostId", "host_id"),
                ("entryFee", "entry_fee"),
                ("maxPlayers", "max_players"),
            ):
                if name not in data and legacy in data:
                    data[name] = data[legacy]
        return data


class JoinIn(BaseModel):
    user_id: str = Field(..., min_length=1)

    @model_validator(mode="before")
    def accept_user_id_alias(cls, data):
        if isinstance(data, dict) and "user_id" not in data and "userId" in data:
            data = {**data, "user_id": data["userId"]}
        return data


class ParticipantOut(BaseModel):
    user_id: str
    name: Optional[str] = None
    joined_at: datetime
    eliminated_at: Optional[datetime] = None
    active: bool = True

    @classmethod
    def from_join(cls, join) -> "ParticipantOut":
        return cls(
            user_id=join.user_id,
            name=join.user.name if join.user is not None else None,
            joined_at=join.joined_at,
            eliminated_at=join.eliminated_at,
            active=join.eliminated_at is None,
        )


class WheelOut(BaseModel):
    id: int
    host_id: str
    title: Optional[str] = None
    entry_fee: int
    max_players: Optional[int] = None
    status: str
    created_at: datetime
    starts_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    winner_id: Optional[str] = None
    players: int = 0
    active_players: int = 0

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_wheel(cls, wheel) -> "WheelOut":
        joins = list(wheel.joins or [])
        return cls(
            id=wheel.id,
            host_id=wheel.host_id,
            title=wheel.title,
            entry_fee=wheel.entry_fee,
            max_players=wheel.max_players,
            status=wheel.status.value,
            created_at=wheel.created_at,
            starts_at=wheel.starts_at,
            finished_at=wheel.finished_at,
            winner_id=wheel.winner_id,
            players=len(joins),
            active_players=sum(1 for j in joins if j.eliminated_at is None),
        )


class JoinOut(BaseModel):
    success: bool = True
    wheel_id: int
    user_id: str


class AbortOut(BaseModel):
    wheel_id: int
    status: str
    refunded: list[str]


# ============================ Misc ============================

class MessageOut(BaseModel):
    message: str


class InfoOut(BaseModel):
    app: str
    version: str


class ErrorOut(BaseModel):
    error: str
    detail: str
