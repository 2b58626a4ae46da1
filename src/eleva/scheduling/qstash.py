"""QStash HTTP client: the one place that talks to the external scheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from eleva.config import Settings
from eleva.errors import SchedulerAPIError

logger = logging.getLogger(__name__)

JOB_NAME_HEADER = "x-cron-job-name"
PRIORITY_HEADER = "x-cron-priority"
_FORWARD_PREFIX = "upstash-forward-"


def _normalise_headers(raw: Any) -> dict[str, str]:
    """Flatten the scheduler's header map into lower-case single values."""
    headers: dict[str, str] = {}
    if not isinstance(raw, dict):
        return headers
    for key, value in raw.items():
        name = str(key).lower()
        if name.startswith(_FORWARD_PREFIX):
            name = name[len(_FORWARD_PREFIX) :]
        if isinstance(value, list):
            value = value[0] if value else ""
        headers[name] = str(value)
    return headers


def _parse_created(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return None
    # The API reports milliseconds; older payloads used seconds
    if ts > 1e11:
        ts /= 1000
    return datetime.fromtimestamp(ts, UTC)


@dataclass
class RemoteSchedule:
    schedule_id: str
    destination: str
    cron: str | None = None
    interval: str | None = None
    retries: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteSchedule:
        retries = data.get("retries")
        return cls(
            schedule_id=str(data.get("scheduleId", "")),
            destination=str(data.get("destination", "")),
            cron=data.get("cron") or None,
            interval=data.get("interval") or None,
            retries=int(retries) if retries is not None else None,
            headers=_normalise_headers(data.get("header", data.get("headers"))),
            body=data.get("body"),
            created_at=_parse_created(data.get("createdAt")),
        )

    @property
    def job_name(self) -> str | None:
        return self.headers.get(JOB_NAME_HEADER)

    @property
    def priority(self) -> str | None:
        return self.headers.get(PRIORITY_HEADER)

    @property
    def cadence(self) -> str | None:
        return self.cron or self.interval


@dataclass
class ScheduleRequest:
    destination: str
    cron: str | None = None
    interval: str | None = None
    retries: int = 3
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    schedule_id: str | None = None

    def to_api(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "destination": self.destination,
            "retries": self.retries,
            "headers": dict(self.headers),
        }
        if self.cron:
            payload["cron"] = self.cron
        if self.interval:
            payload["interval"] = self.interval
        if self.body is not None:
            payload["body"] = self.body
        if self.schedule_id:
            payload["scheduleId"] = self.schedule_id
        return payload


class QStashClient:
    """Async wrapper around the scheduler's ``/schedules`` API."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://qstash.upstash.io/v2",
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> QStashClient:
        settings.require("qstash_token")
        return cls(
            settings.qstash_token,  # type: ignore[arg-type]
            settings.qstash_api_url,
            timeout=settings.scheduler_timeout_seconds,
            **kwargs,
        )

    async def __aenter__(self) -> QStashClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise SchedulerAPIError(f"Scheduler unreachable: {exc}") from exc

        if response.status_code >= 400:
            detail = response.text[:200]
            raise SchedulerAPIError(
                f"Scheduler API error: {response.status_code} {detail}".strip(),
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def list(self) -> list[RemoteSchedule]:
        data = await self._request("GET", "/schedules")
        return [RemoteSchedule.from_api(item) for item in (data or [])]

    async def create(self, request: ScheduleRequest) -> str:
        """Create a schedule, or update it in place when ``schedule_id`` is set."""
        data = await self._request("POST", "/schedules", json=request.to_api())
        schedule_id = (data or {}).get("scheduleId") or request.schedule_id
        if not schedule_id:
            raise SchedulerAPIError("Scheduler API did not return a scheduleId")
        logger.debug("Upserted schedule %s -> %s", schedule_id, request.destination)
        return str(schedule_id)

    async def delete(self, schedule_id: str) -> None:
        await self._request("DELETE", f"/schedules/{schedule_id}")
        logger.debug("Deleted schedule %s", schedule_id)
