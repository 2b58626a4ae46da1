"""Shared fixtures: an in-process scheduler API and a throwaway SQLite database."""

from __future__ import annotations

import itertools
import json
from datetime import UTC, datetime

import httpx
import pytest

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
BASE_URL = "https://app.eleva.test"
QSTASH_URL = "https://qstash.test/v2"


class FakeQStash:
    """In-memory stand-in for the scheduler's /schedules API.

    Stores forwarded headers the way the real API echoes them back
    (``Upstash-Forward-`` prefixed, list-valued).
    """

    def __init__(self) -> None:
        self.schedules: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_jobs: set[str] = set()
        self.fail_deletes: set[str] = set()
        self.down = False
        self._ids = itertools.count(1)
        self._clock = itertools.count(1_700_000_000_000, 1000)

    def add(self, destination: str, *, cron: str | None = None, interval: str | None = None,
            headers: dict[str, str] | None = None, retries: int = 3) -> str:
        schedule_id = f"scd_{next(self._ids)}"
        self.schedules[schedule_id] = {
            "scheduleId": schedule_id,
            "destination": destination,
            "cron": cron or "",
            "interval": interval,
            "retries": retries,
            "header": {f"Upstash-Forward-{k}": [v] for k, v in (headers or {}).items()},
            "createdAt": next(self._clock),
        }
        return schedule_id

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if self.down:
            return httpx.Response(502, text="bad gateway")
        if request.headers.get("authorization") != "Bearer test-token":
            return httpx.Response(401, json={"error": "unauthorized"})

        path = request.url.path.removeprefix("/v2")
        if request.method == "GET" and path == "/schedules":
            return httpx.Response(200, json=list(self.schedules.values()))

        if request.method == "POST" and path == "/schedules":
            body = json.loads(request.content)
            headers = body.get("headers", {})
            if headers.get("x-cron-job-name") in self.fail_jobs:
                return httpx.Response(500, text="internal error")
            schedule_id = body.get("scheduleId")
            if schedule_id and schedule_id in self.schedules:
                created = self.schedules[schedule_id]["createdAt"]
            else:
                schedule_id = f"scd_{next(self._ids)}"
                created = next(self._clock)
            self.schedules[schedule_id] = {
                "scheduleId": schedule_id,
                "destination": body["destination"],
                "cron": body.get("cron", ""),
                "interval": body.get("interval"),
                "retries": body.get("retries"),
                "body": body.get("body"),
                "header": {f"Upstash-Forward-{k}": [v] for k, v in headers.items()},
                "createdAt": created,
            }
            return httpx.Response(200, json={"scheduleId": schedule_id})

        if request.method == "DELETE" and path.startswith("/schedules/"):
            schedule_id = path.rsplit("/", 1)[-1]
            if schedule_id in self.fail_deletes:
                return httpx.Response(500, text="internal error")
            if self.schedules.pop(schedule_id, None) is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(200)

        return httpx.Response(404, text="not found")


@pytest.fixture
def fake_qstash():
    return FakeQStash()


@pytest.fixture
def qstash_client(fake_qstash):
    from eleva.scheduling.qstash import QStashClient

    return QStashClient("test-token", QSTASH_URL, transport=httpx.MockTransport(fake_qstash.handler))


@pytest.fixture
def synchronizer(qstash_client):
    from eleva.scheduling.registry import default_registry
    from eleva.scheduling.sync import ScheduleSynchronizer

    return ScheduleSynchronizer(qstash_client, default_registry(), BASE_URL, api_key="cron-key")


@pytest.fixture
async def session_factory(tmp_path):
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    import eleva.models  # noqa: F401
    from eleva.db.session import Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'eleva.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
