# app/core/container.py
from __future__ import annotations

import random
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from app.domain.services.admin_actions import AdminActions
from app.domain.services.broadcaster import EventBroadcaster
from app.domain.services.engine import EliminationEngine, EngineConfig
from app.domain.services.ledger import Ledger
from app.domain.services.sessions import SessionRegistry
from app.domain.services.wheel_service import WheelService
from app.domain.services.wheel_store import WheelStore
from app.infrastructure.db import database as db
from app.infrastructure.db.config import Settings, get_settings


class Container:
    """
    Простой контейнер зависимостей:
      - settings: конфиг приложения
      - db_engine, session_factory: движок БД и фабрика AsyncSession (передаётся явно в Ledger/Store)
      - ledger, store: деньги и колёса
      - registry, broadcaster: подписчики и рассылка событий
      - engine: таймеры колёс
      - wheels, admin: фасады команд
    """
    def __init__(
        self,
        settings: Optional[Settings] = None,
        db_engine: Optional[AsyncEngine] = None,
        *,
        engine_config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings: Settings = settings or get_settings()
        if db_engine is None:
            self.db_engine = db.get_engine()
            self.session_factory = db.get_session_factory()
        else:
            self.db_engine = db_engine
            self.session_factory = db.make_session_factory(db_engine)

        if rng is None:
            rng = random.Random(self.settings.RANDOM_SEED)

        self.registry = SessionRegistry()
        self.broadcaster = EventBroadcaster(
            self.registry, send_timeout=self.settings.BROADCAST_SEND_TIMEOUT_SEC
        )
        self.ledger = Ledger(self.session_factory)
        self.store = WheelStore(self.session_factory, self.ledger)
        self.engine = EliminationEngine(
            self.store,
            self.broadcaster,
            engine_config or EngineConfig.from_settings(self.settings),
            rng=rng,
        )
        self.wheels = WheelService(
            self.store,
            self.engine,
            self.broadcaster,
            single_active=self.settings.SINGLE_ACTIVE_WHEEL,
        )
        self.admin = AdminActions(self.session_factory, self.ledger)

    async def shutdown(self) -> None:
        await self.engine.shutdown()
