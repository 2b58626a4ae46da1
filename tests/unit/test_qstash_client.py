"""Tests for eleva.scheduling.qstash."""

import json
from datetime import UTC, datetime

import httpx
import pytest

from eleva.errors import SchedulerAPIError
from eleva.scheduling.qstash import QStashClient, RemoteSchedule, ScheduleRequest


def _client(handler):
    return QStashClient("test-token", "https://qstash.test/v2", transport=httpx.MockTransport(handler))


def test_remote_schedule_from_api():
    remote = RemoteSchedule.from_api(
        {
            "scheduleId": "scd_1",
            "destination": "https://x/api/cron/keep-alive",
            "cron": "",
            "interval": "10m",
            "retries": 3,
            "header": {
                "Upstash-Forward-X-Cron-Job-Name": ["keepAlive"],
                "Upstash-Forward-X-Cron-Priority": ["low"],
            },
            "createdAt": 1_773_144_000_000,
        }
    )
    assert remote.job_name == "keepAlive"
    assert remote.priority == "low"
    assert remote.cadence == "10m"
    assert remote.cron is None
    assert remote.created_at == datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def test_remote_schedule_without_headers():
    remote = RemoteSchedule.from_api({"scheduleId": "scd_2", "destination": "https://x", "cron": "0 9 * * *"})
    assert remote.job_name is None
    assert remote.retries is None
    assert remote.created_at is None


def test_schedule_request_to_api():
    body = ScheduleRequest(
        destination="https://x/y", cron="0 9 * * *", retries=3, headers={"a": "b"}, schedule_id="scd_9"
    ).to_api()
    assert body == {
        "destination": "https://x/y",
        "retries": 3,
        "headers": {"a": "b"},
        "cron": "0 9 * * *",
        "scheduleId": "scd_9",
    }
    assert "scheduleId" not in ScheduleRequest(destination="d", interval="10m").to_api()


async def test_list_sends_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["authorization"]
        seen["path"] = request.url.path
        return httpx.Response(200, json=[{"scheduleId": "scd_1", "destination": "d", "cron": "* * * * *"}])

    async with _client(handler) as client:
        schedules = await client.list()
    assert seen == {"auth": "Bearer test-token", "path": "/v2/schedules"}
    assert [s.schedule_id for s in schedules] == ["scd_1"]


async def test_create_returns_schedule_id():
    def handler(request):
        assert json.loads(request.content)["destination"] == "https://x/y"
        return httpx.Response(201, json={"scheduleId": "scd_new"})

    async with _client(handler) as client:
        assert await client.create(ScheduleRequest(destination="https://x/y", cron="0 9 * * *")) == "scd_new"


async def test_create_without_id_in_response_raises():
    async with _client(lambda request: httpx.Response(200, json={})) as client:
        with pytest.raises(SchedulerAPIError, match="scheduleId"):
            await client.create(ScheduleRequest(destination="d", cron="0 9 * * *"))


async def test_error_status_raises_scheduler_error():
    async with _client(lambda request: httpx.Response(401, text="bad token")) as client:
        with pytest.raises(SchedulerAPIError) as exc_info:
            await client.list()
    assert exc_info.value.status_code == 401


async def test_transport_error_raises_scheduler_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(SchedulerAPIError, match="unreachable"):
            await client.delete("scd_1")


def test_from_settings_requires_token():
    from eleva.config import Settings
    from eleva.errors import ConfigurationError

    with pytest.raises(ConfigurationError, match="QSTASH_TOKEN"):
        QStashClient.from_settings(Settings(_env_file=None, qstash_token=None))
