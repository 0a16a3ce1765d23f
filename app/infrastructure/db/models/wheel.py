# app/infrastructure/db/models/wheel.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.infrastructure.db.database import Base

if TYPE_CHECKING:
    from app.infrastructure.db.models.join import Join


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WheelStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    ABORTED = "ABORTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({WheelStatus.FINISHED, WheelStatus.ABORTED})

# Разрешённые переходы. Из терминальных статусов выхода нет.
ALLOWED_TRANSITIONS: dict[WheelStatus, frozenset[WheelStatus]] = {
    WheelStatus.PENDING: frozenset({WheelStatus.RUNNING, WheelStatus.ABORTED}),
    WheelStatus.RUNNING: frozenset({WheelStatus.FINISHED}),
    WheelStatus.FINISHED: frozenset(),
    WheelStatus.ABORTED: frozenset(),
}


def can_transition(current: WheelStatus, target: WheelStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class Wheel(Base):
    """
    Один раунд игры "колесо на выбывание".

    - entry_fee > 0 (проверка на уровне БД)
    - max_players: необязательный верхний предел, не меньше 2
    - winner_id заполняется только при переходе в FINISHED
    - Join'ы принадлежат колесу (каскадное удаление)
    """
    __tablename__ = "wheels"
    __table_args__ = (
        CheckConstraint("entry_fee > 0", name="entry_fee_positive"),
        CheckConstraint("max_players IS NULL OR max_players >= 2", name="max_players_min"),
        Index("ix_wheels_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    host_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    entry_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    max_players: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[WheelStatus] = mapped_column(
        SAEnum(WheelStatus),
        default=WheelStatus.PENDING,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    winner_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    joins: Mapped[list["Join"]] = relationship(
        "Join",
        back_populates="wheel",
        cascade="all, delete-orphan",
        order_by="Join.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:  # pragma: no cover - для отладки
        return (
            f"<Wheel id={self.id} status={self.status.value} "
            f"fee={self.entry_fee} max={self.max_players}>"
        )
