"""
Inbox Repository

Repository pattern for inbox database operations.
Provides lookups and writes used by the processor, ledger and send path.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from messaging_inbox.persistence.models import (
    ChannelAccount,
    Contact,
    ContactHandle,
    Conversation,
    Message,
    WebhookEvent,
    Workspace,
)


class InboxRepository:
    """Repository for inbox database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Workspaces & Channel Accounts
    # =========================================================================

    def get_workspace(self, workspace_id: UUID) -> Workspace | None:
        """Get workspace by ID."""
        return self.db.query(Workspace).filter(Workspace.id == workspace_id).first()

    def create_workspace(self, name: str) -> Workspace:
        """Create a workspace."""
        workspace = Workspace(name=name)
        self.db.add(workspace)
        return workspace

    def get_channel_account(self, workspace_id: UUID, channel_type: str, external_id: str) -> ChannelAccount | None:
        """Get a workspace's channel account by type and external id."""
        return (
            self.db.query(ChannelAccount)
            .filter(
                ChannelAccount.workspace_id == workspace_id,
                ChannelAccount.type == channel_type,
                ChannelAccount.external_id == external_id,
            )
            .first()
        )

    def find_channel_account(self, channel_type: str, external_id: str) -> ChannelAccount | None:
        """
        Get the first channel account with this type and external id, in any workspace.

        Used by webhooks, which only know the provider-side identifier.
        """
        return (
            self.db.query(ChannelAccount)
            .filter(
                ChannelAccount.type == channel_type,
                ChannelAccount.external_id == external_id,
            )
            .order_by(ChannelAccount.created_at)
            .first()
        )

    def get_channel_account_by_id(self, channel_account_id: UUID) -> ChannelAccount | None:
        """Get channel account by ID."""
        return self.db.query(ChannelAccount).filter(ChannelAccount.id == channel_account_id).first()

    def create_channel_account(
        self,
        workspace_id: UUID,
        channel_type: str,
        external_id: str,
        display_name: str,
        encrypted_credential: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> ChannelAccount:
        """Create a channel account."""
        account = ChannelAccount(
            workspace_id=workspace_id,
            type=channel_type,
            external_id=external_id,
            display_name=display_name,
            encrypted_credential=encrypted_credential,
            config=config or {},
        )
        self.db.add(account)
        return account

    # =========================================================================
    # Contacts
    # =========================================================================

    def find_contact_by_handle(self, workspace_id: UUID, family: str, external_id: str) -> Contact | None:
        """Get contact through the handle index."""
        return (
            self.db.query(Contact)
            .join(ContactHandle, ContactHandle.contact_id == Contact.id)
            .filter(
                ContactHandle.workspace_id == workspace_id,
                ContactHandle.family == family,
                ContactHandle.external_id == external_id,
            )
            .first()
        )

    def get_contact_by_id(self, contact_id: UUID) -> Contact | None:
        """Get contact by ID."""
        return self.db.query(Contact).filter(Contact.id == contact_id).first()

    def create_contact(self, workspace_id: UUID, primary_name: str, handles: dict[str, str]) -> Contact:
        """Create a contact and index each of its handles."""
        contact = Contact(workspace_id=workspace_id, primary_name=primary_name, handles=dict(handles))
        self.db.add(contact)
        self.db.flush()
        for family, external_id in handles.items():
            self.add_contact_handle(contact, family, external_id)
        return contact

    def add_contact_handle(self, contact: Contact, family: str, external_id: str) -> ContactHandle:
        """Index one handle of a contact."""
        handle = ContactHandle(
            workspace_id=contact.workspace_id,
            family=family,
            external_id=external_id,
            contact_id=contact.id,
        )
        self.db.add(handle)
        return handle

    # =========================================================================
    # Conversations
    # =========================================================================

    def get_conversation(self, workspace_id: UUID, channel_account_id: UUID, contact_id: UUID) -> Conversation | None:
        """Get the conversation between a channel account and a contact."""
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.workspace_id == workspace_id,
                Conversation.channel_account_id == channel_account_id,
                Conversation.contact_id == contact_id,
            )
            .first()
        )

    def get_conversation_by_id(self, workspace_id: UUID, conversation_id: UUID) -> Conversation | None:
        """Get a workspace's conversation by ID."""
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.workspace_id == workspace_id,
                Conversation.id == conversation_id,
            )
            .first()
        )

    def list_conversations(self, workspace_id: UUID, limit: int = 50) -> list[Conversation]:
        """List a workspace's conversations, most recent first."""
        return (
            self.db.query(Conversation)
            .filter(Conversation.workspace_id == workspace_id)
            .order_by(Conversation.last_message_at.desc())
            .limit(limit)
            .all()
        )

    def find_conversations_by_handle(
        self,
        workspace_id: UUID,
        channel_account_id: UUID,
        family: str,
        external_id: str,
    ) -> list[Conversation]:
        """Get a channel account's conversations with the contact owning a handle."""
        return (
            self.db.query(Conversation)
            .join(ContactHandle, ContactHandle.contact_id == Conversation.contact_id)
            .filter(
                Conversation.workspace_id == workspace_id,
                Conversation.channel_account_id == channel_account_id,
                ContactHandle.workspace_id == workspace_id,
                ContactHandle.family == family,
                ContactHandle.external_id == external_id,
            )
            .all()
        )

    def delete_conversation(self, conversation: Conversation) -> int:
        """
        Delete a conversation and its messages.

        Returns:
            Number of messages removed
        """
        deleted = (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation.id)
            .delete(synchronize_session=False)
        )
        self.db.delete(conversation)
        return deleted

    # =========================================================================
    # Messages
    # =========================================================================

    def find_message(
        self,
        workspace_id: UUID,
        conversation_id: UUID,
        external_message_id: str,
        direction: str,
    ) -> Message | None:
        """Get message by its provider id within a conversation and direction."""
        return (
            self.db.query(Message)
            .filter(
                Message.workspace_id == workspace_id,
                Message.conversation_id == conversation_id,
                Message.external_message_id == external_message_id,
                Message.direction == direction,
            )
            .first()
        )

    def get_message_by_external_id(self, workspace_id: UUID, external_message_id: str) -> Message | None:
        """Get message by provider id anywhere in a workspace."""
        return (
            self.db.query(Message)
            .filter(
                Message.workspace_id == workspace_id,
                Message.external_message_id == external_message_id,
            )
            .first()
        )

    def count_messages(self, conversation_id: UUID) -> int:
        """Count messages in a conversation."""
        return self.db.query(Message).filter(Message.conversation_id == conversation_id).count()

    def create_message(
        self,
        workspace_id: UUID,
        conversation_id: UUID,
        direction: str,
        message_type: str,
        body: str | None,
        external_message_id: str | None,
        sent_at=None,
        received_at=None,
        raw_payload: dict[str, Any] | None = None,
    ) -> Message:
        """Create a message."""
        message = Message(
            workspace_id=workspace_id,
            conversation_id=conversation_id,
            direction=direction,
            message_type=message_type,
            body=body,
            external_message_id=external_message_id,
            sent_at=sent_at,
            received_at=received_at,
            raw_payload=raw_payload,
        )
        self.db.add(message)
        return message

    # =========================================================================
    # Webhook Events (Dedup Ledger)
    # =========================================================================

    def get_webhook_event(self, dedupe_key: str) -> WebhookEvent | None:
        """Get ledger entry by dedupe key."""
        return self.db.query(WebhookEvent).filter(WebhookEvent.dedupe_key == dedupe_key).first()

    def list_failed_webhook_events(self, workspace_id: UUID, limit: int = 50) -> list[WebhookEvent]:
        """List ledger entries whose processing failed, newest first."""
        return (
            self.db.query(WebhookEvent)
            .filter(
                WebhookEvent.workspace_id == workspace_id,
                WebhookEvent.error.isnot(None),
            )
            .order_by(WebhookEvent.created_at.desc())
            .limit(limit)
            .all()
        )
