"""Eleva CLI: main entry point."""

import click

from eleva.cli.schedules import cleanup, list_schedules, schedule, stats


@click.group()
@click.version_option(package_name="eleva-cron")
def cli():
    """Eleva scheduled jobs: reminders, payouts, and housekeeping."""


cli.add_command(schedule)
cli.add_command(list_schedules)
cli.add_command(cleanup)
cli.add_command(stats)


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to API_HOST)")
@click.option("--port", default=None, type=int, help="Port (defaults to API_PORT)")
def serve(host: str | None, port: int | None):
    """Serve the cron dispatch endpoints."""
    import uvicorn

    from eleva.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "eleva.api.app:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )
