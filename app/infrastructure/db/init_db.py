# app/infrastructure/db/init_db.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.domain.services.ledger import Ledger, Transfer
from app.infrastructure.db import database as db
from app.infrastructure.db.config import Settings, get_settings
from app.infrastructure.db.database import Base
from app.infrastructure.db.models.transaction import TransactionKind
from app.infrastructure.db.models.user import User

logger = logging.getLogger(__name__)


async def _import_models() -> None:
    """
    Форсируем импорт всех моделей перед созданием схемы,
    чтобы relationship("...") корректно резолвились.
    """
    from app.infrastructure.db.models import (  # noqa: F401
        join as _join,
        transaction as _tx,
        user as _user,
        wheel as _wheel,
    )


async def _ensure_schema(engine: AsyncEngine, drop_all: bool) -> None:
    async with engine.begin() as conn:
        if drop_all:
            logger.info("[init_db] DROP ALL ...")
            await conn.run_sync(Base.metadata.drop_all)
        logger.info("[init_db] CREATE ALL ...")
        await conn.run_sync(Base.metadata.create_all)


async def _ensure_user(
    session: AsyncSession,
    ledger: Ledger,
    *,
    email: str,
    name: str,
    is_admin: bool = False,
    initial_coins: int = 0,
) -> User:
    """
    Идемпотентно создаёт пользователя.
    - Если пользователь уже есть: только проставляем is_admin при необходимости.
    - Стартовые монеты начисляются через Ledger (TOPUP "seed") и только
      при создании: баланс существующего пользователя не перезаписываем.
    """
    email_norm = (email or "").strip().lower()
    user = await session.scalar(select(User).where(User.email == email_norm))

    if user is None:
        user = User.create_instance(email=email_norm, name=name, is_admin=is_admin)
        session.add(user)
        await session.flush()
        if initial_coins > 0:
            await ledger.apply(session, [Transfer(user.id, initial_coins, TransactionKind.TOPUP, "seed")])
        logger.info("[init_db] user created: %s (admin=%s, coins=%d)", email_norm, is_admin, initial_coins)
        return user

    if is_admin and not user.is_admin:
        user.is_admin = True

    return user


async def init(
    drop_all: Optional[bool] = None,
    *,
    engine: Optional[AsyncEngine] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    settings: Optional[Settings] = None,
) -> None:
    """
    Инициализация БД:
      1) Импорт моделей
      2) Создание/пересоздание схемы (по флагам)
      3) Создание админа со стартовым балансом
    """
    settings = settings or get_settings()
    engine = engine or db.get_engine()
    session_factory = session_factory or db.get_session_factory()
    if drop_all is None:
        drop_all = bool(settings.INIT_DB_DROP_ALL)

    await _import_models()
    await _ensure_schema(engine, drop_all)

    ledger = Ledger(session_factory)
    async with session_factory() as session:
        async with session.begin():
            await _ensure_user(
                session,
                ledger,
                email=settings.ADMIN_EMAIL,
                name=settings.ADMIN_NAME,
                is_admin=True,
                initial_coins=settings.ADMIN_COINS,
            )

    logger.info("[init_db] seed completed.")


if __name__ == "__main__":
    asyncio.run(init())
