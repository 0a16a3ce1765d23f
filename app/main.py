# app/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.dependencies import get_db
from app.api.routers import home, users, wheels, ws
from app.core.container import Container
from app.core.exceptions import SpinWheelError
from app.core.logging import configure_logging
from app.infrastructure.db.database import db_ping
from app.infrastructure.db.init_db import init as init_db

logger = logging.getLogger(__name__)


def create_app(
    container: Optional[Container] = None,
    *,
    init_db_on_start: Optional[bool] = None,
) -> FastAPI:
    """
    Сборка приложения. Контейнер можно передать снаружи (тесты),
    иначе он строится из get_settings() и глобального движка БД.
    """
    container = container or Container()
    settings = container.settings

    if init_db_on_start is None:
        init_db_on_start = bool(settings.INIT_DB_ON_START or settings.TESTING)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        if init_db_on_start:
            await init_db(
                engine=container.db_engine,
                session_factory=container.session_factory,
                settings=settings,
            )
        restored = await container.engine.recover()
        logger.info(
            "Started %s %s (pending=%d, running=%d)",
            settings.APP_NAME,
            settings.APP_VERSION,
            len(restored["pending"]),
            len(restored["running"]),
        )
        try:
            yield
        finally:
            await container.shutdown()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        root_path=settings.ROOT_PATH,
        lifespan=lifespan,
    )
    app.state.container = container

    # CORS
    allow_origins = [o.strip() for o in str(settings.CORS_ALLOW_ORIGINS).split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins or ["*"],
        allow_credentials=allow_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SpinWheelError)
    async def spinwheel_error_handler(request: Request, exc: SpinWheelError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # роуты
    app.include_router(home.router)
    app.include_router(users.router)
    app.include_router(wheels.router)
    app.include_router(ws.router)

    # health
    @app.get("/health")
    async def healthcheck() -> dict:
        return {"status": "ok"}

    @app.get("/health/ready")
    async def readiness(session: AsyncSession = Depends(get_db)) -> dict:
        if not await db_ping(session):
            raise HTTPException(status_code=503, detail="db_unavailable")
        return {"status": "ready"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)
