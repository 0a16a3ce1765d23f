# app/infrastructure/db/database.py
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.infrastructure.db.config import Settings, get_settings

# --- Base with naming convention (удобно для Alembic) -----------------
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

# --- Engine & session factory -----------------------------------------
def make_engine(cfg: Optional[Settings] = None, url: Optional[str] = None) -> AsyncEngine:
    """
    Создаёт AsyncEngine по настройкам. `url` перекрывает settings.DATABASE_URL
    (используется тестами для отдельной SQLite-базы).
    """
    cfg = cfg or get_settings()
    database_url = url or cfg.DATABASE_URL

    kwargs = {
        "echo": bool(cfg.DB_ECHO),
        "pool_pre_ping": True,
    }
    if database_url.startswith("sqlite"):
        # ждём освобождения файла вместо мгновенного "database is locked"
        kwargs["connect_args"] = {"timeout": 15}

    return create_async_engine(database_url, **kwargs)

def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )

@lru_cache()
def get_engine() -> AsyncEngine:
    """
    Движок по умолчанию (из env-настроек). Создаётся при первом обращении,
    а не при импорте модуля.
    """
    return make_engine()

@lru_cache()
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return make_session_factory(get_engine())

# --- Optional helpers --------------------------------------------------
async def db_ping(session: AsyncSession) -> bool:
    """
    Быстрый пинг БД для health/ready.
    """
    try:
        await session.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
