# app/core/logging.py
from __future__ import annotations

import logging
from typing import Optional

from app.infrastructure.db.config import Settings, get_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Единая настройка логов процесса. Уровень: LOG_LEVEL (DEBUG=True форсирует DEBUG).
    """
    settings = settings or get_settings()
    level_name = "DEBUG" if settings.DEBUG else str(settings.LOG_LEVEL).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("app").setLevel(level)
    # SQL-эхо управляется DB_ECHO, а не общим уровнем
    if not settings.DB_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
