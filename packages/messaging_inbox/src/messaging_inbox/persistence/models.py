"""
Inbox Database Models

Tables owned by the inbox ingestion core.

Tables:
- workspaces: Tenant boundary
- channel_accounts: Connected WhatsApp instances, Facebook Pages, Instagram accounts
- contacts: External identities known to a workspace
- contact_handles: Index of (channel family, external id) -> contact
- conversations: Thread between one channel account and one contact
- messages: Every inbound/outbound message
- webhook_events: Dedup ledger of admitted webhook deliveries
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from messaging_inbox.contracts.payloads import isoformat

InboxBase = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStatus(str, Enum):
    """Status of a conversation."""

    OPEN = "open"
    PENDING = "pending"
    CLOSED = "closed"


class InboxModelMixin:
    """Common fields for workspace-scoped models."""

    id = Column(Uuid, primary_key=True, default=uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Workspace(InboxBase):
    """Tenant boundary. Every other row is scoped by workspace_id."""

    __tablename__ = "workspaces"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ChannelAccount(InboxBase, InboxModelMixin):
    """
    One connected external channel.

    external_id is the join key used by inbound webhooks:
    instance name (Evolution), page id (Facebook), account id (Instagram).
    """

    __tablename__ = "channel_accounts"

    type = Column(String(32), nullable=False)  # whatsapp_evolution, facebook_page, instagram_business
    external_id = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=False)
    encrypted_credential = Column(Text, nullable=True)  # API key or page access token, vault format
    config = Column(JSONType, nullable=False, default=dict)  # base_url, instance_name, page_id

    __table_args__ = (
        Index("idx_channel_accounts_type_external", "type", "external_id"),
        Index("idx_channel_accounts_workspace_type_external", "workspace_id", "type", "external_id"),
    )


class Contact(InboxBase, InboxModelMixin):
    """
    An external identity known to a workspace.

    handles maps channel family keys (wa_id, ig_id, fb_psid) to external ids.
    """

    __tablename__ = "contacts"

    primary_name = Column(String(255), nullable=False)
    handles = Column(JSONType, nullable=False, default=dict)


class ContactHandle(InboxBase):
    """Secondary index over Contact.handles, written in the same transaction."""

    __tablename__ = "contact_handles"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    family = Column(String(16), nullable=False)
    external_id = Column(String(255), nullable=False)
    contact_id = Column(Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("workspace_id", "family", "external_id", name="uq_contact_handles_workspace_family_external"),
    )


class Conversation(InboxBase, InboxModelMixin):
    """
    Thread between one channel account and one contact.

    The unique constraint is the serialization point for concurrent
    first-contact events.
    """

    __tablename__ = "conversations"

    channel_account_id = Column(Uuid, ForeignKey("channel_accounts.id", ondelete="CASCADE"), nullable=False)
    contact_id = Column(Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=ConversationStatus.OPEN.value)
    unread_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "workspace_id", "channel_account_id", "contact_id", name="uq_conversations_workspace_channel_contact"
        ),
        Index("idx_conversations_workspace_last_message", "workspace_id", "last_message_at"),
    )


class Message(InboxBase, InboxModelMixin):
    """
    One sent or received item.

    external_message_id is the provider id used to reconcile outbound echoes.
    sent_at is set for outbound, received_at for inbound.
    """

    __tablename__ = "messages"

    conversation_id = Column(Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    direction = Column(String(8), nullable=False)  # inbound, outbound
    message_type = Column(String(16), nullable=False, default="text")
    body = Column(Text, nullable=True)
    external_message_id = Column(String(255), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    raw_payload = Column(JSONType, nullable=True)

    __table_args__ = (
        Index(
            "idx_messages_reconcile", "workspace_id", "conversation_id", "external_message_id", "direction"
        ),
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for live updates and API responses."""
        return {
            "id": str(self.id),
            "conversationId": str(self.conversation_id),
            "direction": self.direction,
            "messageType": self.message_type,
            "body": self.body,
            "externalMessageId": self.external_message_id,
            "sentAt": isoformat(self.sent_at),
            "receivedAt": isoformat(self.received_at),
            "mediaUrl": (self.raw_payload or {}).get("mediaUrl"),
        }


class WebhookEvent(InboxBase):
    """
    Dedup ledger entry, one per admitted webhook delivery.

    processed_at is set once processing finishes, error only on failure.
    """

    __tablename__ = "webhook_events"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(32), nullable=False)  # evolution, meta
    dedupe_key = Column(String(512), nullable=False)
    raw_payload = Column(JSONType, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_webhook_events_dedupe_key"),
    )
