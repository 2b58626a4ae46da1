"""Detailed health endpoint: component-level status for the dispatcher."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text

from eleva.config import Settings, get_settings
from eleva.db.session import get_session_factory
from eleva.errors import ElevaError
from eleva.scheduling.qstash import QStashClient

router = APIRouter()
logger = logging.getLogger(__name__)

_start_time = time.monotonic()


async def _check_db() -> str:
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Health check: database unreachable: %s", exc)
        return "disconnected"
    return "connected"


async def _check_scheduler(settings: Settings) -> tuple[str, int | None]:
    if not settings.qstash_token:
        return "unconfigured", None
    try:
        async with QStashClient.from_settings(settings) as client:
            schedules = await client.list()
    except ElevaError as exc:
        logger.warning("Health check: scheduler unreachable: %s", exc)
        return "disconnected", None
    return "connected", len(schedules)


@router.get("/api/health")
async def health_check(settings: Settings = Depends(get_settings)):
    """Return database and scheduler status."""
    scheduler, schedule_count = await _check_scheduler(settings)
    result = {
        "status": "ok",
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "db": await _check_db(),
        "scheduler": scheduler,
        "remote_schedules": schedule_count,
    }
    if result["db"] == "disconnected" or scheduler == "disconnected":
        result["status"] = "degraded"
    return result
