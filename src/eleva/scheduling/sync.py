"""Registry-to-scheduler reconciliation.

The registry is the desired state, the scheduler holds the live state. Jobs are
keyed by name (carried on each remote schedule as the ``x-cron-job-name``
forwarded header) and only the deltas are applied:

* registry entries with no remote counterpart are created;
* remote schedules whose cadence, destination, retries or priority drifted are
  updated in place, keeping their schedule id;
* remote schedules that carry a job name no longer in the registry (and extra
  copies of a name left behind by older blind-create runs) are deleted.

Schedules without a job-name header belong to someone else and are left alone,
except that one pointing at a missing job's exact destination is adopted.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field

import structlog

from eleva.config import Settings
from eleva.errors import PartialSyncFailure, ServiceUnavailable
from eleva.scheduling.qstash import (
    JOB_NAME_HEADER,
    PRIORITY_HEADER,
    QStashClient,
    RemoteSchedule,
    ScheduleRequest,
)
from eleva.scheduling.registry import ScheduledJob, ScheduleRegistry, default_registry

logger = structlog.get_logger(__name__)


@dataclass
class PlannedUpdate:
    job: ScheduledJob
    remote: RemoteSchedule
    reasons: list[str]


@dataclass
class SyncPlan:
    creates: list[ScheduledJob] = field(default_factory=list)
    updates: list[PlannedUpdate] = field(default_factory=list)
    unchanged: list[tuple[ScheduledJob, RemoteSchedule]] = field(default_factory=list)
    deletes: list[RemoteSchedule] = field(default_factory=list)

    @property
    def is_converged(self) -> bool:
        return not (self.creates or self.updates or self.deletes)


@dataclass
class JobResult:
    name: str
    action: str
    ok: bool = True
    schedule_id: str | None = None
    error: str | None = None


@dataclass
class SyncReport:
    results: list[JobResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> list[JobResult]:
        return [r for r in self.results if not r.ok]

    def count(self, action: str) -> int:
        return sum(1 for r in self.results if r.ok and r.action == action)

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise PartialSyncFailure(self)


@dataclass
class CleanupReport:
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class ScheduleStats:
    configured: int
    remote: int
    missing: list[str]
    orphaned: list[str]
    drifted: list[str]
    duplicates: list[str]
    foreign: int
    priority_counts: dict[str, int]

    @property
    def in_sync(self) -> bool:
        return not (self.missing or self.orphaned or self.drifted or self.duplicates)


def _normalise_cadence(value: str | None) -> str:
    return " ".join((value or "").split())


class ScheduleSynchronizer:
    """Diff-and-apply reconciler between a ScheduleRegistry and the scheduler."""

    def __init__(
        self,
        client: QStashClient,
        registry: ScheduleRegistry,
        base_url: str,
        *,
        api_key: str | None = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    @classmethod
    def from_settings(
        cls, settings: Settings, registry: ScheduleRegistry | None = None
    ) -> ScheduleSynchronizer:
        """Build a synchronizer with its own client; close it with ``aclose``."""
        settings.require("qstash_token", "base_url")
        return cls(
            QStashClient.from_settings(settings),
            registry or default_registry(retries=settings.schedule_retries),
            settings.base_url,  # type: ignore[arg-type]
            api_key=settings.cron_api_key,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Desired state
    # ------------------------------------------------------------------

    def build_request(self, job: ScheduledJob, schedule_id: str | None = None) -> ScheduleRequest:
        headers = {
            "Content-Type": "application/json",
            "x-qstash-request": "true",
            JOB_NAME_HEADER: job.name,
            PRIORITY_HEADER: job.priority.value,
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return ScheduleRequest(
            destination=job.destination(self.base_url),
            cron=job.cadence.value if job.cadence.is_cron else None,
            interval=None if job.cadence.is_cron else job.cadence.value,
            retries=job.retries,
            headers=headers,
            body=json.dumps({"job": job.name}),
            schedule_id=schedule_id,
        )

    def drift(self, job: ScheduledJob, remote: RemoteSchedule) -> list[str]:
        """Return the fields on which ``remote`` differs from ``job``."""
        reasons = []
        expected_cron = job.cadence.value if job.cadence.is_cron else None
        expected_interval = None if job.cadence.is_cron else job.cadence.value
        if _normalise_cadence(remote.cron) != _normalise_cadence(expected_cron) or (
            _normalise_cadence(remote.interval) != _normalise_cadence(expected_interval)
        ):
            reasons.append("cadence")
        if remote.destination != job.destination(self.base_url):
            reasons.append("destination")
        if remote.retries is not None and remote.retries != job.retries:
            reasons.append("retries")
        if remote.priority is not None and remote.priority != job.priority.value:
            reasons.append("priority")
        if remote.job_name != job.name:
            reasons.append("name")
        return reasons

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def compute_plan(self, remote: list[RemoteSchedule]) -> SyncPlan:
        """Pure diff of the registry against a snapshot of remote schedules."""
        plan = SyncPlan()
        by_name: dict[str, list[RemoteSchedule]] = {}
        foreign: list[RemoteSchedule] = []
        for schedule in sorted(remote, key=lambda s: (s.created_at is None, s.created_at or 0)):
            if schedule.job_name:
                by_name.setdefault(schedule.job_name, []).append(schedule)
            else:
                foreign.append(schedule)

        for job in self.registry:
            matches = by_name.pop(job.name, [])
            if not matches:
                destination = job.destination(self.base_url)
                adopted = next((s for s in foreign if s.destination == destination), None)
                if adopted is not None:
                    foreign.remove(adopted)
                    matches = [adopted]
            if not matches:
                plan.creates.append(job)
                continue

            keeper, *extras = matches
            plan.deletes.extend(extras)
            reasons = self.drift(job, keeper)
            if reasons:
                plan.updates.append(PlannedUpdate(job, keeper, reasons))
            else:
                plan.unchanged.append((job, keeper))

        for leftovers in by_name.values():
            plan.deletes.extend(leftovers)
        return plan

    async def plan(self) -> SyncPlan:
        return self.compute_plan(await self.client.list())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def list(self) -> list[RemoteSchedule]:
        return await self.client.list()

    async def sync(self, *, prune: bool = True, dry_run: bool = False) -> SyncReport:
        """Bring the scheduler in line with the registry.

        Each job is applied independently: a failure is recorded and the next
        job is attempted. Nothing is rolled back.
        """
        plan = await self.plan()
        report = SyncReport()

        for job, remote in plan.unchanged:
            report.results.append(JobResult(job.name, "unchanged", schedule_id=remote.schedule_id))

        for job in plan.creates:
            report.results.append(await self._apply(job, "created", dry_run=dry_run))

        for update in plan.updates:
            report.results.append(
                await self._apply(
                    update.job,
                    "updated",
                    schedule_id=update.remote.schedule_id,
                    dry_run=dry_run,
                    reasons=update.reasons,
                )
            )

        if prune:
            for remote in plan.deletes:
                report.results.append(await self._delete(remote, dry_run=dry_run))

        logger.info(
            "schedule_sync_complete",
            created=report.count("created"),
            updated=report.count("updated"),
            unchanged=report.count("unchanged"),
            deleted=report.count("deleted"),
            failed=len(report.failed),
            dry_run=dry_run,
        )
        return report

    async def _apply(
        self,
        job: ScheduledJob,
        action: str,
        *,
        schedule_id: str | None = None,
        dry_run: bool = False,
        reasons: list[str] | None = None,
    ) -> JobResult:
        log = logger.bind(job=job.name, action=action, cadence=job.cadence.value)
        if dry_run:
            log.info("schedule_planned", reasons=reasons)
            return JobResult(job.name, action, schedule_id=schedule_id)
        try:
            new_id = await self.client.create(self.build_request(job, schedule_id))
        except ServiceUnavailable as exc:
            log.error("schedule_failed", error=str(exc))
            return JobResult(job.name, action, ok=False, schedule_id=schedule_id, error=str(exc))
        log.info("schedule_applied", schedule_id=new_id, reasons=reasons)
        return JobResult(job.name, action, schedule_id=new_id)

    async def _delete(self, remote: RemoteSchedule, *, dry_run: bool = False) -> JobResult:
        name = remote.job_name or remote.destination
        log = logger.bind(job=name, schedule_id=remote.schedule_id)
        if dry_run:
            log.info("schedule_delete_planned")
            return JobResult(name, "deleted", schedule_id=remote.schedule_id)
        try:
            await self.client.delete(remote.schedule_id)
        except ServiceUnavailable as exc:
            log.error("schedule_delete_failed", error=str(exc))
            return JobResult(
                name, "deleted", ok=False, schedule_id=remote.schedule_id, error=str(exc)
            )
        log.info("schedule_deleted")
        return JobResult(name, "deleted", schedule_id=remote.schedule_id)

    async def cleanup(self) -> CleanupReport:
        """Delete every remote schedule. Destructive; meant for full re-provisioning."""
        report = CleanupReport()
        for remote in await self.client.list():
            try:
                await self.client.delete(remote.schedule_id)
            except ServiceUnavailable as exc:
                logger.error("cleanup_delete_failed", schedule_id=remote.schedule_id, error=str(exc))
                report.failed[remote.schedule_id] = str(exc)
                continue
            report.deleted.append(remote.schedule_id)
        logger.info("cleanup_complete", deleted=len(report.deleted), failed=len(report.failed))
        return report

    async def stats(self) -> ScheduleStats:
        remote = await self.client.list()
        plan = self.compute_plan(remote)
        names = Counter(s.job_name for s in remote if s.job_name)
        return ScheduleStats(
            configured=len(self.registry),
            remote=len(remote),
            missing=[job.name for job in plan.creates],
            orphaned=sorted(
                {s.job_name for s in plan.deletes if s.job_name and s.job_name not in self.registry}
            ),
            drifted=[u.job.name for u in plan.updates],
            duplicates=sorted(name for name, n in names.items() if n > 1),
            foreign=sum(1 for s in remote if not s.job_name),
            priority_counts=dict(Counter(s.priority or "unknown" for s in remote)),
        )
