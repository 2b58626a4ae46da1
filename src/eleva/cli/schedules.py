"""eleva schedule / list / cleanup / stats: manage scheduler state."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from rich.console import Console
from rich.table import Table

from eleva.config import get_settings
from eleva.errors import ConfigurationError, PartialSyncFailure, ServiceUnavailable
from eleva.log import configure_logging
from eleva.scheduling.sync import ScheduleSynchronizer

console = Console()

T = TypeVar("T")

_ACTION_STYLES = {
    "created": "green",
    "updated": "yellow",
    "unchanged": "dim",
    "deleted": "red",
}


def _run(operation: Callable[[ScheduleSynchronizer], Awaitable[T]]) -> T:
    """Build a synchronizer from settings, run ``operation``, exit 1 on fatal errors."""
    settings = get_settings()
    configure_logging(settings.log_level)

    async def _go() -> T:
        synchronizer = ScheduleSynchronizer.from_settings(settings)
        try:
            return await operation(synchronizer)
        finally:
            await synchronizer.aclose()

    try:
        return asyncio.run(_go())
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise SystemExit(1) from e
    except ServiceUnavailable as e:
        console.print(f"[bold red]Scheduler unavailable:[/bold red] {e}")
        raise SystemExit(1) from e


@click.command()
@click.option("--no-prune", is_flag=True, help="Keep remote schedules that are not in the registry")
@click.option("--dry-run", is_flag=True, help="Show what would change without applying it")
def schedule(no_prune: bool, dry_run: bool):
    """Reconcile remote schedules with the job registry."""
    report = _run(lambda s: s.sync(prune=not no_prune, dry_run=dry_run))

    title = "Planned Changes" if dry_run else "Schedule Sync"
    table = Table(title=title, show_header=True)
    table.add_column("Job")
    table.add_column("Action")
    table.add_column("Schedule ID")
    table.add_column("Error")
    for result in report.results:
        style = "bold red" if not result.ok else _ACTION_STYLES.get(result.action, "")
        table.add_row(
            result.name,
            f"[{style}]{result.action}[/{style}]" if style else result.action,
            result.schedule_id or "",
            result.error or "",
        )
    console.print(table)
    console.print(
        f"created={report.count('created')} updated={report.count('updated')} "
        f"unchanged={report.count('unchanged')} deleted={report.count('deleted')} "
        f"failed={len(report.failed)}"
    )
    try:
        report.raise_for_failures()
    except PartialSyncFailure as e:
        console.print(f"[bold red]{e}[/bold red]")
        raise SystemExit(1) from e


@click.command(name="list")
def list_schedules():
    """List schedules currently registered with the scheduler."""
    remote = _run(lambda s: s.list())
    if not remote:
        console.print("[dim]No schedules registered[/dim]")
        return

    table = Table(title=f"Remote Schedules ({len(remote)})", show_header=True)
    table.add_column("ID")
    table.add_column("Job")
    table.add_column("Cadence")
    table.add_column("Priority")
    table.add_column("Retries")
    table.add_column("Destination")
    for item in remote:
        table.add_row(
            item.schedule_id,
            item.job_name or "[dim]-[/dim]",
            item.cadence or "",
            item.priority or "",
            "" if item.retries is None else str(item.retries),
            item.destination,
        )
    console.print(table)


@click.command()
@click.option("--yes", is_flag=True, help="Do not prompt for confirmation")
def cleanup(yes: bool):
    """Delete every remote schedule."""
    if not yes:
        click.confirm("Delete ALL schedules from the scheduler?", abort=True)
    report = _run(lambda s: s.cleanup())
    console.print(f"[green]Deleted {len(report.deleted)} schedule(s)[/green]")
    for schedule_id, error in report.failed.items():
        console.print(f"[red]Failed to delete {schedule_id}: {error}[/red]")
    if not report.ok:
        raise SystemExit(1)


@click.command()
@click.option("--strict", is_flag=True, help="Exit 1 when the scheduler is not in sync")
def stats(strict: bool):
    """Compare remote schedules against the registry."""
    result = _run(lambda s: s.stats())

    table = Table(title="Schedule Stats", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Configured jobs", str(result.configured))
    table.add_row("Remote schedules", str(result.remote))
    table.add_row("Missing", ", ".join(result.missing) or "-")
    table.add_row("Orphaned", ", ".join(result.orphaned) or "-")
    table.add_row("Drifted", ", ".join(result.drifted) or "-")
    table.add_row("Duplicated", ", ".join(result.duplicates) or "-")
    table.add_row("Unmanaged", str(result.foreign))
    for priority, count in sorted(result.priority_counts.items()):
        table.add_row(f"Priority {priority}", str(count))
    console.print(table)

    if result.in_sync:
        console.print("[green]Scheduler is in sync with the registry[/green]")
    else:
        console.print("[yellow]Scheduler has drifted; run `eleva schedule`[/yellow]")
        if strict:
            raise SystemExit(1)
