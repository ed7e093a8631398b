"""Shared fixtures: SQLite (aiosqlite) in place of PostgreSQL, fakeredis in place of Redis."""

from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text

from crudhub.context import ServiceContext, build_context
from crudhub.core.config import Settings
from crudhub.core.metrics import MetricsRegistry
from crudhub.main import create_app

TASKS_DDL = (
    "CREATE TABLE main_table ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, task TEXT NOT NULL)"
)
USERS_DDL = (
    "CREATE TABLE users ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "email TEXT NOT NULL UNIQUE, name TEXT NOT NULL)"
)


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    """Settings pointing at a throwaway SQLite file; keyword args override."""

    def factory(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
            "feature_redis_cache": True,
            "feature_edit_task": True,
            "feature_delete_task": True,
            "log_dir": str(tmp_path / "logs"),
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry(default_collectors=False)


@pytest_asyncio.fixture
async def fake_redis() -> AsyncGenerator[FakeAsyncRedis, None]:
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


async def create_tables(ctx: ServiceContext) -> None:
    async with ctx.db.engine.begin() as conn:
        await conn.execute(text(TASKS_DDL))
        await conn.execute(text(USERS_DDL))


@pytest.fixture
def make_context(metrics, fake_redis) -> Callable[[Settings], ServiceContext]:
    def factory(settings: Settings) -> ServiceContext:
        return build_context(settings, metrics=metrics, redis=fake_redis)

    return factory


@pytest_asyncio.fixture
async def context(make_context, settings) -> AsyncGenerator[ServiceContext, None]:
    ctx = make_context(settings)
    await create_tables(ctx)
    yield ctx
    await ctx.db.dispose()


async def make_client(service: str, ctx: ServiceContext) -> AsyncClient:
    app = create_app(service, settings=ctx.settings, context=ctx)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def users_client(context) -> AsyncGenerator[AsyncClient, None]:
    async with await make_client("users", context) as client:
        yield client


@pytest_asyncio.fixture
async def tasks_client(context) -> AsyncGenerator[AsyncClient, None]:
    async with await make_client("tasks", context) as client:
        yield client
