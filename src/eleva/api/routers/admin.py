"""Admin router: read-only view of the scheduler against the registry."""

from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

from eleva.config import Settings, get_settings
from eleva.errors import ConfigurationError, ServiceUnavailable
from eleva.scheduling.sync import ScheduleSynchronizer

router = APIRouter()


def require_api_key(
    x_api_key: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not (
        x_api_key and settings.cron_api_key and hmac.compare_digest(x_api_key, settings.cron_api_key)
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


class JobOut(BaseModel):
    name: str
    endpoint: str
    cadence: str
    cadence_human: str
    priority: str
    retries: int
    description: str


class StatsOut(BaseModel):
    in_sync: bool
    configured: int
    remote: int
    missing: list[str]
    orphaned: list[str]
    drifted: list[str]
    duplicates: list[str]
    foreign: int
    priority_counts: dict[str, int]


@router.get("/jobs", response_model=list[JobOut], dependencies=[Depends(require_api_key)])
async def list_jobs(request: Request):
    out = []
    for job in request.app.state.registry:
        out.append(
            JobOut(
                name=job.name,
                endpoint=job.endpoint,
                cadence=job.cadence.value,
                cadence_human=job.cadence.describe(),
                priority=job.priority.value,
                retries=job.retries,
                description=job.description,
            )
        )
    return out


@router.get(
    "/schedules/stats", response_model=StatsOut, dependencies=[Depends(require_api_key)]
)
async def schedule_stats(request: Request, settings: Settings = Depends(get_settings)):
    try:
        synchronizer = ScheduleSynchronizer.from_settings(settings, request.app.state.registry)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    try:
        stats = await synchronizer.stats()
    except ServiceUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    finally:
        await synchronizer.aclose()
    return StatsOut(in_sync=stats.in_sync, **vars(stats))
