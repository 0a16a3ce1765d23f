import asyncio
import os
import random
import uuid

import httpx
import pytest

# 👉 Глобальный движок приложения тоже смотрит в SQLite, а флаг TESTING включён
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("TESTING", "1")

from app.core.container import Container  # noqa: E402
from app.domain.services.engine import EngineConfig  # noqa: E402
from app.infrastructure.db.config import Settings  # noqa: E402
from app.infrastructure.db.database import make_engine  # noqa: E402
from app.infrastructure.db.init_db import init  # noqa: E402


class RecordingBroadcaster:
    """Подменяет EventBroadcaster: просто складывает события в список."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict, str | None]] = []

    async def publish(self, event, payload, room=None) -> int:
        self.events.append((event, payload, room))
        return 1

    def names(self) -> list[str]:
        return [e for e, _, _ in self.events]

    def of(self, event: str) -> list[dict]:
        return [p for e, p, _ in self.events if e == event]


def sqlite_url(tmp_path) -> str:
    # отдельный файл на тест: параллельные сессии не делят одно соединение
    return f"sqlite+aiosqlite:///{tmp_path / 'spinwheel.db'}"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=sqlite_url(tmp_path),
        TESTING=True,
        RANDOM_SEED=42,
        ADMIN_COINS=10000,
    )


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        min_quorum=3,
        auto_start_delay=60.0,
        tick=0.01,
        payout=lambda pot, players: 100,
    )


@pytest.fixture
async def db_engine(settings):
    engine = make_engine(settings)
    yield engine
    await engine.dispose()


@pytest.fixture
async def container(settings, db_engine, engine_config):
    c = Container(settings, db_engine, engine_config=engine_config, rng=random.Random(7))
    await init(drop_all=True, engine=db_engine, session_factory=c.session_factory, settings=settings)
    yield c
    await c.shutdown()


@pytest.fixture
def recorder(container) -> RecordingBroadcaster:
    """Все события контейнера идут в список вместо сокетов."""
    rec = RecordingBroadcaster()
    container.broadcaster = rec
    container.engine.broadcaster = rec
    container.wheels.broadcaster = rec
    return rec


@pytest.fixture
def make_user(container):
    async def _make(coins: int = 1000, name: str = "") -> str:
        email = f"player_{uuid.uuid4().hex[:8]}@example.com"
        user = await container.admin.create_user(email, name or email.split("@")[0], coins=coins)
        return user.id

    return _make


@pytest.fixture
def admin_id(container):
    async def _admin() -> str:
        user = await container.admin.find_by_email(container.settings.ADMIN_EMAIL)
        assert user is not None
        return user.id

    return _admin


@pytest.fixture
async def client(container):
    from app.main import create_app

    app = create_app(container, init_db_on_start=False)
    # ASGITransport не запускает lifespan: схему уже создала фикстура container
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def wait_for_status(store, wheel_id: int, statuses: set, timeout: float = 5.0):
    """Опрашивает хранилище, пока колесо не придёт в один из статусов."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        wheel = await store.find_wheel(wheel_id)
        if wheel is not None and wheel.status in statuses:
            return wheel
        if loop.time() > deadline:
            raise AssertionError(f"wheel {wheel_id} stuck in {wheel.status if wheel else None}")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_status(container):
    async def _wait(wheel_id: int, *statuses, timeout: float = 5.0):
        return await wait_for_status(container.store, wheel_id, set(statuses), timeout)

    return _wait
