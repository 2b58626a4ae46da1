"""Cron router: one POST endpoint per registered job."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from eleva.config import Settings, get_settings
from eleva.db.session import get_session_factory
from eleva.dispatch.auth import verify_scheduler_request
from eleva.dispatch.jobs import JOB_HANDLERS, DispatchContext, JobHandler
from eleva.dispatch.payloads import parse_payload
from eleva.errors import ConfigurationError, PayloadValidationError, ServiceUnavailable
from eleva.scheduling.registry import ScheduledJob, ScheduleRegistry

logger = structlog.get_logger(__name__)


async def get_dispatch_context(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[DispatchContext, None]:
    ctx = DispatchContext(session_factory=get_session_factory(), settings=settings)
    try:
        yield ctx
    finally:
        await ctx.aclose()


def _endpoint(job: ScheduledJob, handler: JobHandler):
    async def run_job(
        request: Request,
        auth_method: str = Depends(verify_scheduler_request),
        ctx: DispatchContext = Depends(get_dispatch_context),
    ):
        log = logger.bind(job=job.name, auth=auth_method)
        try:
            payload = parse_payload(job.name, await request.body())
        except PayloadValidationError as exc:
            log.warning("payload_rejected", error=str(exc))
            raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

        if payload.as_of is not None:
            ctx.now = payload.as_of
        log.info("job_started", now=ctx.now.isoformat())
        try:
            summary = await handler(ctx, payload)
        except ServiceUnavailable as exc:
            log.error("job_unavailable", error=str(exc))
            raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

        if not summary.ok:
            # Non-2xx makes the scheduler redeliver; claimed rows are skipped next time
            raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=summary.to_dict())
        return summary.to_dict()

    run_job.__name__ = f"run_{job.endpoint.rsplit('/', 1)[-1].replace('-', '_')}"
    return run_job


def build_router(
    registry: ScheduleRegistry, handlers: dict[str, JobHandler] | None = None
) -> APIRouter:
    """Register every job in ``registry``; a job without a handler is a startup error."""
    handlers = JOB_HANDLERS if handlers is None else handlers
    missing = [name for name in registry.names() if name not in handlers]
    if missing:
        raise ConfigurationError(f"No dispatch handler for job(s): {', '.join(missing)}")

    router = APIRouter()
    for job in registry:
        router.add_api_route(
            job.endpoint,
            _endpoint(job, handlers[job.name]),
            methods=["POST"],
            name=job.name,
            summary=job.description or job.name,
        )
    return router
