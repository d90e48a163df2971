"""CLI commands for inspecting conversations."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dmpilot.config import get_settings
from dmpilot.models.conversation import ConversationState, DeliveryStatus
from dmpilot.repositories import ConversationRepository

conversations_app = typer.Typer(help="Inspect conversations")
console = Console()


def get_session():
    """Create a database session."""
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Session = sessionmaker(bind=engine)
    return Session()


@conversations_app.command("list")
def list_conversations(
    account_id: Optional[int] = typer.Option(None, "--account", "-a", help="Filter by account ID"),
    state: Optional[ConversationState] = typer.Option(None, "--state", "-s", help="Filter by state"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of conversations"),
):
    """List the most recently active conversations."""
    session = get_session()
    repo = ConversationRepository(session)

    conversations = repo.list_for_account(account_id, limit=limit, state=state)
    if not conversations:
        console.print("[yellow]No conversations found.[/yellow]")
        session.close()
        return

    table = Table(title="Conversations")
    table.add_column("ID", style="dim")
    table.add_column("Account", style="dim")
    table.add_column("User", style="cyan")
    table.add_column("State")
    table.add_column("Email")
    table.add_column("Phone")
    table.add_column("Messages", justify="right")
    table.add_column("Last Message")

    for conversation in conversations:
        table.add_row(
            str(conversation.id),
            str(conversation.account_id),
            f"@{conversation.username}" if conversation.username else conversation.external_user_id,
            conversation.conversation_state.value,
            conversation.collected_email or "-",
            conversation.collected_phone or "-",
            str(len(conversation.messages)),
            conversation.last_message_at.strftime("%Y-%m-%d %H:%M") if conversation.last_message_at else "-",
        )

    console.print(table)
    session.close()


@conversations_app.command("show")
def show_conversation(
    conversation_id: int = typer.Argument(..., help="Conversation ID"),
):
    """Show the full message history of a conversation."""
    session = get_session()
    repo = ConversationRepository(session)

    conversation = repo.get(conversation_id)
    if not conversation:
        console.print(f"[red]Error:[/red] Conversation {conversation_id} not found.")
        session.close()
        raise typer.Exit(1)

    who = f"@{conversation.username}" if conversation.username else conversation.external_user_id
    console.print(f"[bold]Conversation #{conversation.id}[/bold] with {who}")
    console.print(f"State: {conversation.conversation_state.value}")
    for name, value in conversation.collected_data.items():
        console.print(f"{name.capitalize()}: {value}")
    console.print()

    for message in repo.get_messages(conversation.id):
        speaker = "[cyan]user[/cyan]" if message.role.value == "user" else "[magenta]bot[/magenta]"
        line = f"{message.index:>3} {speaker}: {message.content}"
        if message.delivery_status == DeliveryStatus.DELIVERY_FAILED:
            line += f"  [red](failed: {message.delivery_error})[/red]"
        elif message.delivery_status == DeliveryStatus.PENDING:
            line += "  [yellow](pending)[/yellow]"
        console.print(line)

    session.close()


@conversations_app.command("stats")
def conversation_stats(
    account_id: int = typer.Argument(..., help="Account ID"),
):
    """Count conversations per state for an account."""
    session = get_session()
    repo = ConversationRepository(session)

    counts = repo.count_by_state(account_id)
    table = Table(title=f"Conversations for account {account_id}")
    table.add_column("State")
    table.add_column("Count", justify="right")
    for state in ConversationState:
        table.add_row(state.value, str(counts.get(state.value, 0)))

    console.print(table)
    session.close()
