"""Tests for the FastAPI app: cron dispatch routes, health and admin."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DB_PASSWORD", "test-password")

API_KEY = "cron-key"


def _settings(**kwargs):
    from eleva.config import Settings

    defaults = {"cron_api_key": API_KEY, "base_url": "https://app.eleva.test", "qstash_token": "test-token"}
    defaults.update(kwargs)
    return Settings(_env_file=None, **defaults)


def _make_app(handlers=None, settings=None):
    """Create the app with stubbed handlers and a context without real clients."""
    from eleva.api.app import create_app
    from eleva.api.routers.cron import get_dispatch_context
    from eleva.config import get_settings
    from eleva.dispatch.jobs import DispatchContext, JobSummary

    settings = settings or _settings()
    stubs = {
        name: AsyncMock(return_value=JobSummary(job=name, candidates=1, completed=1))
        for name in ("appointmentReminders", "appointmentReminders1Hr", "sendPaymentReminders",
                     "processExpertTransfers", "processPendingPayouts",
                     "cleanupExpiredReservations", "keepAlive")
    }
    stubs.update(handlers or {})
    contexts = []

    async def override_context():
        ctx = DispatchContext(session_factory=MagicMock(), settings=settings)
        contexts.append(ctx)
        yield ctx

    with patch.dict("eleva.dispatch.jobs.JOB_HANDLERS", stubs):
        app = create_app(settings=settings)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_dispatch_context] = override_context
    return app, stubs, contexts


# ── cron dispatch ─────────────────────────────────────────────────────────────


def test_every_registered_job_has_a_route():
    app, _, _ = _make_app()
    paths = {route.path for route in app.routes}
    assert "/api/cron/appointment-reminders" in paths
    assert "/api/cron/keep-alive" in paths
    assert len([p for p in paths if p.startswith("/api/cron/")]) == 7


def test_missing_handler_fails_at_startup():
    from eleva.api.routers.cron import build_router
    from eleva.errors import ConfigurationError
    from eleva.scheduling.registry import default_registry

    with pytest.raises(ConfigurationError, match="keepAlive"):
        build_router(default_registry(), handlers={})


def test_unauthenticated_call_rejected():
    app, stubs, _ = _make_app()
    with TestClient(app) as client:
        resp = client.post("/api/cron/keep-alive")
    assert resp.status_code == 401
    stubs["keepAlive"].assert_not_awaited()


def test_authenticated_call_runs_handler():
    app, stubs, _ = _make_app()
    with TestClient(app) as client:
        resp = client.post(
            "/api/cron/process-expert-transfers",
            headers={"x-api-key": API_KEY},
            json={"job": "processExpertTransfers", "limit": 10},
        )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["completed"] == 1
    payload = stubs["processExpertTransfers"].await_args.args[1]
    assert payload.limit == 10


def test_as_of_overrides_now():
    app, _, contexts = _make_app()
    with TestClient(app) as client:
        client.post(
            "/api/cron/keep-alive",
            headers={"x-api-key": API_KEY},
            json={"job": "keepAlive", "as_of": "2026-03-10T12:00:00Z"},
        )
    assert contexts[0].now == datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def test_invalid_payload_is_422():
    app, stubs, _ = _make_app()
    with TestClient(app) as client:
        resp = client.post(
            "/api/cron/keep-alive", headers={"x-api-key": API_KEY}, json={"job": "appointmentReminders"}
        )
    assert resp.status_code == 422
    stubs["keepAlive"].assert_not_awaited()


def test_failed_units_return_503():
    from eleva.dispatch.jobs import JobSummary

    summary = JobSummary(job="appointmentReminders", candidates=2, completed=1)
    summary.fail("meeting m-2: novu down")
    app, _, _ = _make_app({"appointmentReminders": AsyncMock(return_value=summary)})
    with TestClient(app) as client:
        resp = client.post("/api/cron/appointment-reminders", headers={"x-api-key": API_KEY})
    assert resp.status_code == 503
    assert resp.json()["detail"]["errors"] == ["meeting m-2: novu down"]


def test_service_unavailable_returns_503():
    from eleva.errors import PaymentProviderError

    handler = AsyncMock(side_effect=PaymentProviderError("Stripe unreachable"))
    app, _, _ = _make_app({"processPendingPayouts": handler})
    with TestClient(app) as client:
        resp = client.post("/api/cron/process-pending-payouts", headers={"x-api-key": API_KEY})
    assert resp.status_code == 503
    assert "Stripe unreachable" in resp.json()["detail"]


def test_signed_request_accepted():
    import time

    from jose import jwt

    from eleva.dispatch.auth import body_digest

    settings = _settings(cron_api_key=None, qstash_current_signing_key="sig_current")
    app, stubs, _ = _make_app(settings=settings)
    body = b'{"job":"keepAlive"}'
    now = int(time.time())
    token = jwt.encode(
        {
            "iss": "Upstash",
            "sub": "https://app.eleva.test/api/cron/keep-alive",
            "iat": now,
            "nbf": now,
            "exp": now + 300,
            "body": body_digest(body),
        },
        "sig_current",
        algorithm="HS256",
    )
    with TestClient(app) as client:
        resp = client.post(
            "/api/cron/keep-alive",
            content=body,
            headers={"Upstash-Signature": token, "Content-Type": "application/json"},
        )
    assert resp.status_code == 200
    stubs["keepAlive"].assert_awaited_once()


# ── health / admin ────────────────────────────────────────────────────────────


def test_health():
    app, _, _ = _make_app()
    with TestClient(app) as client:
        resp = client.get("/health")
    assert resp.json() == {"status": "ok", "service": "eleva-cron", "jobs": 7}


def test_detailed_health_degraded_when_scheduler_down():
    from eleva.errors import SchedulerAPIError

    app, _, _ = _make_app()
    with (
        patch("eleva.api.routers.health._check_db", AsyncMock(return_value="connected")),
        patch(
            "eleva.scheduling.qstash.QStashClient.list",
            AsyncMock(side_effect=SchedulerAPIError("down")),
        ),
    ):
        with TestClient(app) as client:
            resp = client.get("/api/health")
    body = resp.json()
    assert body["db"] == "connected"
    assert body["scheduler"] == "disconnected"
    assert body["status"] == "degraded"


def test_admin_requires_api_key():
    app, _, _ = _make_app()
    with TestClient(app) as client:
        assert client.get("/api/admin/jobs").status_code == 401
        resp = client.get("/api/admin/jobs", headers={"x-api-key": API_KEY})
    assert resp.status_code == 200
    jobs = {j["name"]: j for j in resp.json()}
    assert jobs["keepAlive"]["cadence_human"] == "Every 10 minutes"
    assert jobs["appointmentReminders"]["cadence"] == "0 9 * * *"


def test_admin_schedule_stats():
    from eleva.scheduling.sync import ScheduleStats

    stats = ScheduleStats(
        configured=7,
        remote=6,
        missing=["keepAlive"],
        orphaned=[],
        drifted=[],
        duplicates=[],
        foreign=0,
        priority_counts={"high": 4, "critical": 1, "medium": 1},
    )
    app, _, _ = _make_app()
    with patch("eleva.scheduling.sync.ScheduleSynchronizer.stats", AsyncMock(return_value=stats)):
        with TestClient(app) as client:
            resp = client.get("/api/admin/schedules/stats", headers={"x-api-key": API_KEY})
    assert resp.status_code == 200
    assert resp.json()["in_sync"] is False
    assert resp.json()["missing"] == ["keepAlive"]
