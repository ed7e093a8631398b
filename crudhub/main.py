import argparse
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.routing import Match

from crudhub.context import ServiceContext, build_context
from crudhub.core.config import Settings, get_settings
from crudhub.core.logging_config import get_logger, setup_logging
from crudhub.core.metrics import route_label
from crudhub.routers import system, tasks, users

logger = get_logger(__name__)

# service name -> (resource router, message for a body missing required fields)
SERVICES = {
    "tasks": (tasks.router, "Task is required"),
    "users": (users.router, "Email and name are required"),
}


def matched_route(request: Request) -> Optional[str]:
    """Template of the route that served the request, or None when nothing matched."""
    route = request.scope.get("route")
    if route is not None:
        return route.path
    for candidate in request.app.router.routes:
        match, _ = candidate.matches(request.scope)
        if match == Match.FULL:
            return candidate.path
    return None


def create_app(
    service: str,
    settings: Optional[Settings] = None,
    context: Optional[ServiceContext] = None,
) -> FastAPI:
    resource_router, required_message = SERVICES[service]
    settings = settings or get_settings()
    setup_logging(settings)
    ctx = context or build_context(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await ctx.startup()
        logger.info("Server started", service=service)
        yield
        await ctx.shutdown()

    app = FastAPI(
        title=f"{service.capitalize()} API",
        description="Instrumented CRUD service on PostgreSQL",
        swagger_ui_parameters={"displayRequestDuration": True},
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = ctx
    app.state.service = service

    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"])

    @app.middleware("http")
    async def record_request(request: Request, call_next):
        started = time.perf_counter()
        logger.info(
            "Request received",
            source_ip=request.headers.get("x-forwarded-for", "unknown"),
            endpoint=request.url.path,
            method=request.method,
        )
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            ctx.metrics.observe_request(
                request.method,
                route_label(matched_route(request)),
                status_code,
                time.perf_counter() - started,
            )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            {"success": False, "message": exc.detail},
            status_code=exc.status_code,
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if any(tuple(err.get("loc", ()))[:1] == ("body",) for err in errors):
            message = required_message
        else:
            message = "Invalid request parameters"
        logger.warning(
            message, endpoint=request.url.path, fields=[err.get("loc") for err in errors]
        )
        return JSONResponse(
            {"success": False, "message": message},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    # Include routers
    app.include_router(system.router)
    if service == "users":
        app.include_router(system.redis_router)
    app.include_router(resource_router)
    return app


def create_tasks_app() -> FastAPI:
    """Factory for ``uvicorn crudhub.main:create_tasks_app --factory``."""
    return create_app("tasks")


def create_users_app() -> FastAPI:
    """Factory for ``uvicorn crudhub.main:create_users_app --factory``."""
    return create_app("users")


def main(argv: Optional[list[str]] = None) -> None:
    """Run one service under uvicorn: ``crudhub tasks`` or ``crudhub users``."""
    parser = argparse.ArgumentParser(prog="crudhub")
    parser.add_argument("service", choices=sorted(SERVICES))
    args = parser.parse_args(argv)

    settings = get_settings()
    port = (
        settings.task_service_port
        if args.service == "tasks"
        else settings.user_service_port
    )
    uvicorn.run(
        f"crudhub.main:create_{args.service}_app",
        factory=True,
        host=settings.host,
        port=port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
