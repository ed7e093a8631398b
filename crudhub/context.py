from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine
from typing_extensions import Annotated

from crudhub.cache.layer import CacheLayer
from crudhub.core.config import FeatureFlags, Settings
from crudhub.core.logging_config import get_logger
from crudhub.core.metrics import MetricsRegistry
from crudhub.database import PoolMetricsHooks, QueryExecutor, create_engine
from crudhub.services.task_service import TaskService
from crudhub.services.user_service import UserService

logger = get_logger(__name__)


@dataclass
class ServiceContext:
    """Handles built once at startup and shared by every request."""

    settings: Settings
    flags: FeatureFlags
    metrics: MetricsRegistry
    db: QueryExecutor
    pool_hooks: PoolMetricsHooks
    cache: CacheLayer
    tasks: TaskService
    users: UserService

    async def reload_flags(self, flags: FeatureFlags) -> None:
        self.flags = flags
        await self.cache.reload_flags(flags)

    async def startup(self) -> None:
        await self.cache.init_cache()

    async def shutdown(self) -> None:
        await self.cache.close()
        await self.db.dispose()
        logger.info("Service context closed")


def build_context(
    settings: Settings,
    *,
    engine: Optional[AsyncEngine] = None,
    metrics: Optional[MetricsRegistry] = None,
    redis: Optional[Redis] = None,
) -> ServiceContext:
    # The pool is wired before metrics exist; hooks stay inert until bound.
    engine = engine or create_engine(settings)
    pool_hooks = PoolMetricsHooks(host=settings.db_host)
    pool_hooks.attach(engine)

    metrics = metrics or MetricsRegistry()
    pool_hooks.bind(metrics)

    flags = settings.feature_flags
    db = QueryExecutor(engine, metrics)
    cache = CacheLayer(settings, flags, metrics=metrics, redis=redis)
    return ServiceContext(
        settings=settings,
        flags=flags,
        metrics=metrics,
        db=db,
        pool_hooks=pool_hooks,
        cache=cache,
        tasks=TaskService(db, settings.task_columns),
        users=UserService(db, settings.user_columns, cache),
    )


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


ContextDep = Annotated[ServiceContext, Depends(get_context)]
