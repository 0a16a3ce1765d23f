# app/infrastructure/db/models/join.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.infrastructure.db.database import Base

if TYPE_CHECKING:
    from app.infrastructure.db.models.user import User
    from app.infrastructure.db.models.wheel import Wheel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Join(Base):
    """
    Участие игрока в колесе.

    eliminated_at IS NULL: игрок ещё в игре. Выбывание логическое
    (проставляется время), записи не удаляются: остаётся история.
    """
    __tablename__ = "joins"
    __table_args__ = (
        UniqueConstraint("wheel_id", "user_id", name="uq_joins_wheel_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    wheel_id: Mapped[int] = mapped_column(
        ForeignKey("wheels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )
    eliminated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    wheel: Mapped["Wheel"] = relationship("Wheel", back_populates="joins")
    user: Mapped["User"] = relationship("User", back_populates="joins", lazy="selectin")

    def __repr__(self) -> str:  # pragma: no cover - для отладки
        return (
            f"<Join wheel_id={self.wheel_id} user_id={self.user_id!s} "
            f"eliminated_at={self.eliminated_at}>"
        )
