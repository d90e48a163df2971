"""Main CLI entry point for DM Pilot."""

import logging

import typer
from rich.console import Console
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dmpilot import __version__
from dmpilot.cli.accounts import accounts_app
from dmpilot.cli.conversations import conversations_app
from dmpilot.cli.events import events_app
from dmpilot.cli.leads import leads_app
from dmpilot.config import get_settings
from dmpilot.models.base import Base

app = typer.Typer(
    name="dmpilot",
    help="DM Pilot - Instagram DM automation with lead capture and AI replies",
    no_args_is_help=True,
)

console = Console()

# Register sub-commands
app.add_typer(accounts_app, name="accounts", help="Manage Instagram accounts")
app.add_typer(conversations_app, name="conversations", help="Inspect conversations")
app.add_typer(events_app, name="events", help="Maintain the processed event log")
app.add_typer(leads_app, name="leads", help="View captured leads")


def get_session():
    """Create a database session."""
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Session = sessionmaker(bind=engine)
    return Session()


@app.command()
def init():
    """Initialize the DM Pilot database and show configuration status."""
    settings = get_settings()

    console.print("[bold blue]Initializing DM Pilot...[/bold blue]")

    engine = create_engine(settings.database_url)
    Base.metadata.create_all(engine)
    console.print(f"  Database initialized: {settings.database_url}")

    console.print("\n[bold]Configuration Status:[/bold]")

    if settings.is_anthropic_configured:
        console.print("  [green][+][/green] Anthropic API configured")
    else:
        console.print("  [yellow][!][/yellow] Anthropic API key not set (AI chat uses the fallback reply)")

    if settings.is_signature_check_enabled:
        console.print("  [green][+][/green] Webhook signature check enabled")
    else:
        console.print("  [yellow][!][/yellow] META_APP_SECRET not set (webhook signatures not verified)")

    if settings.webhook_verify_token:
        console.print("  [green][+][/green] Webhook verify token set")
    else:
        console.print("  [yellow][!][/yellow] WEBHOOK_VERIFY_TOKEN not set (Meta subscription check will fail)")

    console.print("\n[bold green]DM Pilot initialized successfully![/bold green]")
    console.print("\nNext steps:")
    console.print("  1. Copy .env.example to .env and configure your API keys")
    console.print("  2. Run 'dmpilot accounts connect' to store an Instagram credential")
    console.print("  3. Run 'dmpilot serve' and point the Meta webhook at /webhooks/instagram")


@app.command()
def version():
    """Show the DM Pilot version."""
    console.print(f"DM Pilot v{__version__}")


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (defaults to settings)"),
    port: int = typer.Option(None, "--port", "-p", help="Port (defaults to settings)"),
):
    """Run the webhook receiver and dashboard API."""
    import uvicorn

    from dmpilot.api.app import create_app

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    engine = create_engine(settings.database_url)
    Base.metadata.create_all(engine)

    console.print("[bold blue]Starting DM Pilot...[/bold blue]")
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    app()
