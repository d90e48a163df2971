"""CLI commands for the processed event log."""

import typer
from rich.console import Console
from sqlalchemy.orm import sessionmaker

from dmpilot.config import get_settings
from dmpilot.engine.idempotency import IdempotencyFilter
from dmpilot.models.base import get_engine

events_app = typer.Typer(help="Maintain the processed event log")
console = Console()


def get_session_factory():
    """Create a session factory for the configured database."""
    settings = get_settings()
    return sessionmaker(bind=get_engine(settings.database_url))


@events_app.command("purge")
def purge_events(
    days: int = typer.Option(None, "--days", "-d", help="Keep event ids newer than this (defaults to settings)"),
):
    """Forget processed event ids older than the deduplication horizon."""
    settings = get_settings()
    horizon = days if days is not None else settings.idempotency_horizon_days

    idempotency = IdempotencyFilter(get_session_factory(), horizon_days=horizon)
    removed = idempotency.purge_expired()
    console.print(f"[green]Purged {removed} event id(s) older than {horizon} day(s).[/green]")
