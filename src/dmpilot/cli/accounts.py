"""CLI commands for Instagram account management."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dmpilot.config import get_settings
from dmpilot.models.account import ConnectionStatus
from dmpilot.repositories import AccountRepository
from dmpilot.services.dashboard_service import ConfigValidationError, DashboardService

accounts_app = typer.Typer(help="Manage Instagram accounts")
console = Console()

STATUS_STYLES = {
    ConnectionStatus.CONNECTED: "[green]Connected[/green]",
    ConnectionStatus.EXPIRED: "[yellow]Token Expired[/yellow]",
    ConnectionStatus.ERROR: "[red]Error[/red]",
}


def get_session():
    """Create a database session."""
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Session = sessionmaker(bind=engine)
    return Session()


@accounts_app.command("list")
def list_accounts(
    all_accounts: bool = typer.Option(False, "--all", "-a", help="Show all accounts including inactive"),
):
    """List connected Instagram accounts."""
    session = get_session()
    account_repo = AccountRepository(session)

    if all_accounts:
        accounts = account_repo.get_all()
    else:
        accounts = account_repo.get_active_accounts()

    if not accounts:
        console.print("[yellow]No accounts found.[/yellow]")
        console.print("Run 'dmpilot accounts connect' to add an Instagram account.")
        session.close()
        return

    table = Table(title="Instagram Accounts")
    table.add_column("ID", style="dim")
    table.add_column("Username", style="cyan")
    table.add_column("Instagram ID")
    table.add_column("Page ID")
    table.add_column("Captures")
    table.add_column("Status")

    for account in accounts:
        status = STATUS_STYLES.get(account.connection_status, account.connection_status.value)
        if not account.is_active:
            status = "[red]Inactive[/red]"
        captures = [name for name, on in (("email", account.collect_email), ("phone", account.collect_phone)) if on]

        table.add_row(
            str(account.id),
            f"@{account.username}" if account.username else "-",
            account.instagram_account_id,
            account.page_id,
            ", ".join(captures) or "-",
            status,
        )

    console.print(table)
    session.close()


@accounts_app.command("connect")
def connect_account(
    access_token: str = typer.Option(..., "--token", "-t", help="Page access token", prompt=True, hide_input=True),
    page_id: str = typer.Option(..., "--page-id", help="Facebook Page ID", prompt=True),
    instagram_account_id: str = typer.Option(..., "--instagram-id", help="Instagram business account ID", prompt=True),
    verify: bool = typer.Option(False, "--verify", help="Look up the username through the Graph API"),
):
    """Store or refresh the credential for an Instagram account."""
    session = get_session()
    service = DashboardService(session)

    try:
        account = service.save_instagram_config(access_token, page_id, instagram_account_id)
    except ConfigValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        session.close()
        raise typer.Exit(1)

    if verify:
        from dmpilot.services.instagram.client import InstagramClient, InstagramClientError

        try:
            with InstagramClient(access_token, instagram_account_id) as client:
                info = client.get_account_info()
            AccountRepository(session).update(account.id, username=info.get("username"))
            session.commit()
        except InstagramClientError as e:
            console.print(f"[yellow]Warning:[/yellow] Could not verify the credential: {e}")

    name = f"@{account.username}" if account.username else account.instagram_account_id
    console.print(f"[green]Account saved:[/green] {name} (ID {account.id})")
    session.close()


@accounts_app.command("configure")
def configure_account(
    account_id: int = typer.Argument(..., help="Account ID to configure"),
    collect_email: Optional[bool] = typer.Option(None, "--collect-email/--no-collect-email", help="Ask for an email address"),
    collect_phone: Optional[bool] = typer.Option(None, "--collect-phone/--no-collect-phone", help="Ask for a phone number"),
    max_reprompts: Optional[int] = typer.Option(None, "--max-reprompts", min=0, help="Re-prompts before skipping a field"),
    greeting: Optional[str] = typer.Option(None, "--greeting", help="First message of a conversation"),
    email_prompt: Optional[str] = typer.Option(None, "--email-prompt", help="Question asking for the email"),
    phone_prompt: Optional[str] = typer.Option(None, "--phone-prompt", help="Question asking for the phone number"),
    thank_you: Optional[str] = typer.Option(None, "--thank-you", help="Sent once contact details are collected"),
    fallback: Optional[str] = typer.Option(None, "--fallback", help="Sent when the AI responder is unavailable"),
    system_prompt: Optional[str] = typer.Option(None, "--system-prompt", help="Instructions for the AI responder"),
    stop_keywords: Optional[str] = typer.Option(None, "--stop-keywords", help="Comma-separated opt-out keywords"),
    trigger_keywords: Optional[str] = typer.Option(
        None, "--trigger-keywords", help="Comma-separated keywords that start the flow (empty string: any message)"
    ),
):
    """Change the automation settings of an account."""
    session = get_session()
    account_repo = AccountRepository(session)

    keywords = None
    if stop_keywords is not None:
        keywords = [k.strip() for k in stop_keywords.split(",") if k.strip()]
    triggers = None
    if trigger_keywords is not None:
        triggers = [k.strip() for k in trigger_keywords.split(",") if k.strip()]

    account = account_repo.update_automation(
        account_id,
        collect_email=collect_email,
        collect_phone=collect_phone,
        max_reprompts=max_reprompts,
        greeting_message=greeting,
        email_prompt=email_prompt,
        phone_prompt=phone_prompt,
        thank_you_message=thank_you,
        fallback_message=fallback,
        system_prompt=system_prompt,
        stop_keywords=keywords,
        trigger_keywords=triggers,
    )
    if not account:
        console.print(f"[red]Error:[/red] Account {account_id} not found.")
        session.close()
        raise typer.Exit(1)

    account_repo.commit()
    console.print(f"[green]Automation settings updated for account {account_id}.[/green]")
    session.close()


@accounts_app.command("deactivate")
def deactivate_account(
    account_id: int = typer.Argument(..., help="Account ID to deactivate"),
):
    """Stop handling webhooks for an account."""
    session = get_session()
    account_repo = AccountRepository(session)

    account = account_repo.deactivate(account_id)
    if not account:
        console.print(f"[red]Error:[/red] Account {account_id} not found.")
        session.close()
        raise typer.Exit(1)

    account_repo.commit()
    console.print(f"[green]Account {account_id} deactivated.[/green]")
    session.close()
