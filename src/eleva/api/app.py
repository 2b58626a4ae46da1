"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from eleva.config import Settings, get_settings
from eleva.db.session import reset_engine
from eleva.log import configure_logging
from eleva.scheduling.registry import ScheduleRegistry, default_registry

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await reset_engine()


def create_app(
    registry: ScheduleRegistry | None = None, settings: Settings | None = None
) -> FastAPI:
    settings = settings or get_settings()
    registry = registry or default_registry(retries=settings.schedule_retries)
    configure_logging(settings.log_level, json=settings.app_env == "production")

    app = FastAPI(
        title=f"{settings.app_name} Cron API",
        description="Dispatch targets for scheduled reminders and payouts",
        version="0.1.0",
        lifespan=lifespan,
    )

    from eleva.api.routers import admin, cron, health

    app.include_router(cron.build_router(registry), tags=["cron"])
    app.include_router(health.router, tags=["health"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
    app.state.registry = registry

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "eleva-cron", "jobs": len(registry)}

    return app
