"""Inbox persistence layer."""

from messaging_inbox.persistence.models import (
    ChannelAccount,
    Contact,
    ContactHandle,
    Conversation,
    ConversationStatus,
    InboxBase,
    Message,
    WebhookEvent,
    Workspace,
)
from messaging_inbox.persistence.repo import InboxRepository

__all__ = [
    "ChannelAccount",
    "Contact",
    "ContactHandle",
    "Conversation",
    "ConversationStatus",
    "InboxBase",
    "Message",
    "WebhookEvent",
    "Workspace",
    "InboxRepository",
]
