"""Tests for eleva.cli.* commands using Click's CliRunner."""

from __future__ import annotations

import os
from unittest.mock import patch

import httpx
import pytest
from click.testing import CliRunner

os.environ.setdefault("DB_PASSWORD", "test-password")

BASE_URL = "https://app.eleva.test"


@pytest.fixture(autouse=True)
def wide_console():
    from rich.console import Console

    with patch("eleva.cli.schedules.console", Console(width=200)):
        yield


@pytest.fixture
def cli_env(fake_qstash):
    """Point the CLI at the in-process scheduler."""
    from eleva.config import Settings
    from eleva.scheduling.qstash import QStashClient
    from eleva.scheduling.registry import default_registry
    from eleva.scheduling.sync import ScheduleSynchronizer

    settings = Settings(_env_file=None, qstash_token="test-token", base_url=BASE_URL, cron_api_key="k")

    def build(s, registry=None):
        s.require("qstash_token", "base_url")
        client = QStashClient(
            "test-token", "https://qstash.test/v2", transport=httpx.MockTransport(fake_qstash.handler)
        )
        return ScheduleSynchronizer(client, registry or default_registry(), BASE_URL, api_key="k")

    with (
        patch("eleva.cli.schedules.get_settings", return_value=settings),
        patch.object(ScheduleSynchronizer, "from_settings", side_effect=build),
    ):
        yield settings


# ── eleva schedule ─────────────────────────────────────────────────────────────


def test_schedule_creates_then_converges(cli_env, fake_qstash):
    from eleva.cli.main import cli

    runner = CliRunner()
    first = runner.invoke(cli, ["schedule"])
    assert first.exit_code == 0, first.output
    assert "created=7" in first.output
    assert len(fake_qstash.schedules) == 7

    second = runner.invoke(cli, ["schedule"])
    assert second.exit_code == 0
    assert "created=0 updated=0 unchanged=7 deleted=0 failed=0" in second.output


def test_schedule_dry_run(cli_env, fake_qstash):
    from eleva.cli.main import cli

    result = CliRunner().invoke(cli, ["schedule", "--dry-run"])
    assert result.exit_code == 0
    assert "Planned Changes" in result.output
    assert fake_qstash.schedules == {}


def test_schedule_no_prune_keeps_orphans(cli_env, fake_qstash):
    from eleva.cli.main import cli

    orphan = fake_qstash.add(f"{BASE_URL}/api/cron/old", cron="0 1 * * *", headers={"x-cron-job-name": "oldJob"})
    result = CliRunner().invoke(cli, ["schedule", "--no-prune"])
    assert result.exit_code == 0
    assert orphan in fake_qstash.schedules


def test_schedule_partial_failure_exits_1(cli_env, fake_qstash):
    from eleva.cli.main import cli

    fake_qstash.fail_jobs = {"keepAlive"}
    result = CliRunner().invoke(cli, ["schedule"])
    assert result.exit_code == 1
    assert "1 job(s) failed to sync: keepAlive" in result.output
    assert len(fake_qstash.schedules) == 6


def test_schedule_scheduler_down_exits_1(cli_env, fake_qstash):
    from eleva.cli.main import cli

    fake_qstash.down = True
    result = CliRunner().invoke(cli, ["schedule"])
    assert result.exit_code == 1
    assert "Scheduler unavailable" in result.output


def test_schedule_missing_config_exits_1():
    from eleva.cli.main import cli
    from eleva.config import Settings

    settings = Settings(_env_file=None, qstash_token=None, base_url=None)
    with patch("eleva.cli.schedules.get_settings", return_value=settings):
        result = CliRunner().invoke(cli, ["schedule"])
    assert result.exit_code == 1
    assert "QSTASH_TOKEN" in result.output


# ── eleva list / cleanup / stats ───────────────────────────────────────────────


def test_list_empty(cli_env):
    from eleva.cli.main import cli

    result = CliRunner().invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "No schedules registered" in result.output


def test_list_shows_schedules(cli_env, fake_qstash):
    from eleva.cli.main import cli

    runner = CliRunner()
    runner.invoke(cli, ["schedule"])
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "Remote Schedules (7)" in result.output
    assert "keepAlive" in result.output


def test_cleanup_requires_confirmation(cli_env, fake_qstash):
    from eleva.cli.main import cli

    fake_qstash.add("https://x/a", cron="0 0 * * *")
    result = CliRunner().invoke(cli, ["cleanup"], input="n\n")
    assert result.exit_code == 1
    assert len(fake_qstash.schedules) == 1


def test_cleanup_yes_deletes_everything(cli_env, fake_qstash):
    from eleva.cli.main import cli

    runner = CliRunner()
    runner.invoke(cli, ["schedule"])
    result = runner.invoke(cli, ["cleanup", "--yes"])
    assert result.exit_code == 0
    assert "Deleted 7 schedule(s)" in result.output
    assert fake_qstash.schedules == {}


def test_stats_in_sync(cli_env):
    from eleva.cli.main import cli

    runner = CliRunner()
    runner.invoke(cli, ["schedule"])
    result = runner.invoke(cli, ["stats", "--strict"])
    assert result.exit_code == 0
    assert "in sync" in result.output


def test_stats_strict_fails_on_drift(cli_env):
    from eleva.cli.main import cli

    runner = CliRunner()
    lenient = runner.invoke(cli, ["stats"])
    assert lenient.exit_code == 0
    assert "drifted" in lenient.output
    strict = runner.invoke(cli, ["stats", "--strict"])
    assert strict.exit_code == 1


def test_serve_uses_settings():
    from eleva.cli.main import cli
    from eleva.config import Settings

    settings = Settings(_env_file=None, api_host="127.0.0.1", api_port=9000)
    with (
        patch("eleva.config.get_settings", return_value=settings),
        patch("uvicorn.run") as mock_run,
    ):
        result = CliRunner().invoke(cli, ["serve"])
    assert result.exit_code == 0
    mock_run.assert_called_once()
    assert mock_run.call_args.kwargs["port"] == 9000
    assert mock_run.call_args.kwargs["factory"] is True
