from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response, status

from crudhub.context import ContextDep
from crudhub.core.config import cache_allowed
from crudhub.core.logging_config import get_logger
from crudhub.database import DATABASE_ERRORS

logger = get_logger(__name__)

router = APIRouter(tags=["system"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _service(request: Request) -> str:
    return request.app.state.service


@router.get("/")
async def root(request: Request):
    return {"message": f"{_service(request)} service is running"}


@router.get("/health")
async def health_check(request: Request):
    return {"status": "healthy", "service": _service(request), "timestamp": _now()}


@router.get("/live")
async def live(request: Request):
    return {"status": "alive", "service": _service(request), "timestamp": _now()}


@router.get("/ready")
async def ready(request: Request, response: Response, ctx: ContextDep):
    try:
        await ctx.db.ping()
    except DATABASE_ERRORS as e:
        logger.error("Readiness check failed", error=str(e))
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not ready",
            "service": _service(request),
            "timestamp": _now(),
        }
    return {"status": "ready", "service": _service(request), "timestamp": _now()}


@router.get("/metrics")
async def metrics(ctx: ContextDep):
    return Response(content=ctx.metrics.snapshot(), media_type=ctx.metrics.content_type)


redis_router = APIRouter(tags=["system"])


@redis_router.get("/health/redis")
async def redis_health(response: Response, ctx: ContextDep):
    if not cache_allowed(ctx.flags):
        return {
            "status": "disabled",
            "service": "redis",
            "message": "Redis caching is disabled via feature flag",
        }
    if await ctx.cache.health():
        return {"status": "healthy", "service": "redis", "timestamp": _now()}
    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "unhealthy", "service": "redis", "timestamp": _now()}
