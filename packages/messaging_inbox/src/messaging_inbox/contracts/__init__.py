"""
Inbox Contracts

Event types, canonical events and payload models.
"""

from messaging_inbox.contracts.event_types import (
    ChannelType,
    Direction,
    EventType,
    LiveUpdateType,
    MessageType,
    handle_key_for,
)
from messaging_inbox.contracts.events import (
    CanonicalEvent,
    CanonicalMessage,
    ChatDeletionEvent,
    MediaReference,
)
from messaging_inbox.contracts.payloads import (
    EvolutionWebhookPayload,
    LiveUpdate,
    MetaWebhookPayload,
    SendMessageRequest,
)

__all__ = [
    "ChannelType",
    "Direction",
    "EventType",
    "LiveUpdateType",
    "MessageType",
    "handle_key_for",
    "CanonicalEvent",
    "CanonicalMessage",
    "ChatDeletionEvent",
    "MediaReference",
    "EvolutionWebhookPayload",
    "LiveUpdate",
    "MetaWebhookPayload",
    "SendMessageRequest",
]
