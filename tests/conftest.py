"""Shared fixtures: isolated settings, an in-process Redis and the wired app."""

import fakeredis
import fakeredis.aioredis
import httpx
import pytest
from dependency_injector import providers

from core.backend import RedisBackend
from core.config import Settings
from core.container import container
from core.database import Database

ADMIN_KEY = "test-admin-key"


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'chapters.db'}",
        admin_api_key=ADMIN_KEY,
        redis_connect_attempts=2,
        redis_retry_backoff_ms=1,
        redis_retry_backoff_max_ms=5,
        redis_retry_max_seconds=1.0,
        redis_auto_reconnect=False,
        rate_limit_api_window=3600,
        rate_limit_api_max=20,
        log_format="console",
        log_level="WARNING",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(fake_server):
    return fakeredis.aioredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
async def backend(settings, fake_redis):
    backend = RedisBackend(settings, client=fake_redis)
    await backend.connect()
    yield backend
    await backend.disconnect()


@pytest.fixture
async def app(settings, fake_redis):
    """The FastAPI app with the container pointed at test collaborators."""
    backend = RedisBackend(settings, client=fake_redis)
    database = Database(settings)

    container.settings.override(providers.Object(settings))
    container.backend.override(providers.Object(backend))
    container.database.override(providers.Object(database))
    container.reset_singletons()

    await database.startup()
    await backend.connect()

    from main import app as fastapi_app
    yield fastapi_app

    await backend.disconnect()
    await database.shutdown()
    container.reset_override()
    container.reset_singletons()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app, client=("203.0.113.7", 40000))
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def admin_headers():
    return {"x-admin-key": ADMIN_KEY}


def chapter_row(**overrides) -> dict:
    row = {
        "subject": "Physics",
        "chapter": "Kinematics",
        "class": "Class 11",
        "unit": "Mechanics 1",
        "yearWiseQuestionCount": {"2023": 10, "2024": 12},
        "questionSolved": 5,
        "status": "In Progress",
        "isWeakChapter": False,
    }
    row.update(overrides)
    return row
