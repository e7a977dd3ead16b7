"""
Canonical Inbound Events

Provider-agnostic shapes produced by the adapters. Nothing past the
adapter boundary reads provider JSON except as an opaque raw payload.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from messaging_inbox.contracts.event_types import ChannelType, Direction, EventType, MessageType


@dataclass
class MediaReference:
    """
    Locator of a media attachment.

    requires_fetch is set for provider-internal locators that can only be
    read through an authenticated provider call.
    """

    url: str
    requires_fetch: bool = False


@dataclass
class CanonicalMessage:
    """Content of one canonical event."""

    external_message_id: str
    timestamp: datetime
    text: str | None = None
    message_type: MessageType = MessageType.TEXT
    media: MediaReference | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class CanonicalEvent:
    """A message, comment or reply on a connected channel."""

    channel_type: ChannelType
    channel_external_id: str
    contact_external_id: str
    event_type: EventType
    message: CanonicalMessage
    direction: Direction = Direction.INBOUND
    contact_name: str | None = None


@dataclass
class ChatDeletionEvent:
    """
    A provider signal that chats were removed.

    confirmed is False when the event only hints at a deletion and the
    chats must be checked against the provider before acting.
    """

    channel_type: ChannelType
    channel_external_id: str
    chat_ids: list[str]
    confirmed: bool = True
    raw_payload: dict[str, Any] = field(default_factory=dict)

