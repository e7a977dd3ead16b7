"""
Inbox CLI

Command-line interface for inbox administration.

Commands:
- generate-key: Print a new ENCRYPTION_KEY
- create-workspace: Create a workspace
- add-channel: Connect a WhatsApp instance, Facebook Page or Instagram account
- list-conversations: List conversations of a workspace
- failed-events: List webhook deliveries whose processing failed
"""

import secrets
from typing import Optional
from uuid import UUID

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from messaging_inbox.contracts.event_types import ChannelType

app = typer.Typer(
    name="inbox-cli",
    help="Multi-channel inbox administration CLI",
)

console = Console()


def get_db():
    """Get database session."""
    from basecore.db import get_db as _get_db
    return next(_get_db())


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        rprint(f"[red]Invalid {label}: {value}[/red]")
        raise typer.Exit(1)


@app.command()
def generate_key():
    """Print a random 256-bit key suitable for ENCRYPTION_KEY."""
    print(secrets.token_hex(32))


@app.command()
def create_workspace(name: str = typer.Argument(..., help="Workspace name")):
    """Create a workspace and print its ID."""
    from messaging_inbox.persistence.repo import InboxRepository

    db = get_db()
    try:
        workspace = InboxRepository(db).create_workspace(name)
        db.commit()
        rprint(f"[green]✓ Created workspace[/green] {workspace.name}: {workspace.id}")
    finally:
        db.close()


@app.command()
def add_channel(
    workspace_id: str = typer.Argument(..., help="Workspace UUID"),
    channel_type: ChannelType = typer.Option(..., "--type", help="Channel type"),
    external_id: str = typer.Option(..., help="Evolution instance name, page id or Instagram account id"),
    display_name: str = typer.Option(..., help="Name shown to operators"),
    credential: str = typer.Option(..., help="Evolution API key or page access token (will be encrypted)"),
    base_url: Optional[str] = typer.Option(None, help="Evolution API base URL"),
    page_id: Optional[str] = typer.Option(None, help="Page id used to send (Meta, defaults to external id)"),
):
    """
    Connect a channel account to a workspace.

    external_id must match the identifier the provider puts in its webhooks.
    """
    from messaging_inbox.persistence.repo import InboxRepository
    from messaging_inbox.security.vault import get_vault

    workspace_uuid = _parse_uuid(workspace_id, "workspace ID")

    if channel_type == ChannelType.WHATSAPP_EVOLUTION and not base_url:
        rprint("[red]Evolution channels require --base-url[/red]")
        raise typer.Exit(1)

    try:
        encrypted = get_vault().encrypt(credential)
    except ValueError as e:
        rprint(f"[red]Cannot encrypt credential: {e}[/red]")
        raise typer.Exit(1)

    config: dict[str, str] = {}
    if channel_type == ChannelType.WHATSAPP_EVOLUTION:
        config = {"base_url": base_url, "instance_name": external_id}
    elif page_id:
        config = {"page_id": page_id}

    db = get_db()
    try:
        repo = InboxRepository(db)

        if repo.get_workspace(workspace_uuid) is None:
            rprint(f"[red]Workspace not found: {workspace_id}[/red]")
            raise typer.Exit(1)

        existing = repo.find_channel_account(channel_type.value, external_id)
        if existing:
            rprint(f"[yellow]Warning: {channel_type.value}:{external_id} is already connected[/yellow]")
            rprint(f"  Workspace: {existing.workspace_id}")
            rprint("  Webhooks are routed to the first match.")

        account = repo.create_channel_account(
            workspace_id=workspace_uuid,
            channel_type=channel_type.value,
            external_id=external_id,
            display_name=display_name,
            encrypted_credential=encrypted,
            config=config,
        )
        db.commit()

        rprint("[green]✓ Channel connected[/green]")
        rprint(f"  ID: {account.id}")
        rprint(f"  Type: {account.type}")
        rprint(f"  External ID: {account.external_id}")
    finally:
        db.close()


@app.command()
def list_conversations(
    workspace_id: str = typer.Argument(..., help="Workspace UUID"),
    limit: int = typer.Option(20, help="Maximum conversations to show"),
):
    """List a workspace's conversations, most recent first."""
    from messaging_inbox.persistence.repo import InboxRepository

    workspace_uuid = _parse_uuid(workspace_id, "workspace ID")

    db = get_db()
    try:
        repo = InboxRepository(db)
        conversations = repo.list_conversations(workspace_uuid, limit=limit)

        if not conversations:
            rprint("[yellow]No conversations found[/yellow]")
            return

        table = Table(title=f"Conversations for {workspace_id}")
        table.add_column("ID", style="dim")
        table.add_column("Contact")
        table.add_column("Channel")
        table.add_column("Status")
        table.add_column("Unread", justify="right")
        table.add_column("Last Message")

        for conv in conversations:
            contact = repo.get_contact_by_id(conv.contact_id)
            account = repo.get_channel_account_by_id(conv.channel_account_id)
            table.add_row(
                str(conv.id)[:8],
                contact.primary_name if contact else "-",
                account.display_name if account else "-",
                conv.status,
                str(conv.unread_count),
                conv.last_message_at.strftime("%Y-%m-%d %H:%M") if conv.last_message_at else "-",
            )

        console.print(table)
    finally:
        db.close()


@app.command()
def failed_events(
    workspace_id: str = typer.Argument(..., help="Workspace UUID"),
    limit: int = typer.Option(20, help="Maximum events to show"),
):
    """List webhook deliveries whose processing failed."""
    from messaging_inbox.persistence.repo import InboxRepository

    workspace_uuid = _parse_uuid(workspace_id, "workspace ID")

    db = get_db()
    try:
        events = InboxRepository(db).list_failed_webhook_events(workspace_uuid, limit=limit)

        if not events:
            rprint("[green]No failed events[/green]")
            return

        table = Table(title="Failed webhook events")
        table.add_column("Received")
        table.add_column("Provider")
        table.add_column("Dedupe Key", style="dim")
        table.add_column("Error", style="red")

        for event in events:
            table.add_row(
                event.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                event.provider,
                event.dedupe_key,
                (event.error or "")[:80],
            )

        console.print(table)
    finally:
        db.close()


if __name__ == "__main__":
    app()
