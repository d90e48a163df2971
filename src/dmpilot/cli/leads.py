"""CLI commands for captured leads."""

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dmpilot.config import get_settings

leads_app = typer.Typer(help="View leads captured in conversations")
console = Console()


def _get_session():
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Session = sessionmaker(bind=engine)
    return Session()


def _get_active_account(session, account_id=None):
    from dmpilot.repositories import AccountRepository

    repo = AccountRepository(session)
    if account_id:
        return repo.get(account_id)
    accounts = repo.get_active_accounts()
    return accounts[0] if accounts else None


@leads_app.command("list")
def list_leads(
    account_id: int = typer.Option(None, "--account", "-a", help="Account ID (uses first active if not specified)"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum number of leads"),
):
    """List captured emails and phone numbers, newest first."""
    session = _get_session()

    account = _get_active_account(session, account_id)
    if not account:
        console.print("[red]Error:[/red] No active Instagram account found.")
        console.print("Run 'dmpilot accounts connect' to add an account.")
        session.close()
        raise typer.Exit(1)

    from dmpilot.repositories import LeadRepository

    leads = LeadRepository(session).get_by_account(account.id, limit=limit)
    if not leads:
        console.print("[yellow]No leads captured yet.[/yellow]")
        session.close()
        return

    table = Table(title=f"Leads for account {account.id}")
    table.add_column("ID", style="dim")
    table.add_column("User", style="cyan")
    table.add_column("Email")
    table.add_column("Phone")
    table.add_column("Source")
    table.add_column("Captured")

    for lead in leads:
        table.add_row(
            str(lead.id),
            f"@{lead.username}" if lead.username else lead.external_user_id,
            lead.email or "-",
            lead.phone or "-",
            lead.source,
            lead.created_at.strftime("%Y-%m-%d %H:%M") if lead.created_at else "-",
        )

    console.print(table)
    session.close()
