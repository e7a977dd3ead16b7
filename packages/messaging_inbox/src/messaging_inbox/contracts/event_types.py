"""
Inbox Event Types

Enumerations shared by adapters, the processor and live updates.
"""

from enum import Enum


class ChannelType(str, Enum):
    """Connected channel families."""

    WHATSAPP_EVOLUTION = "whatsapp_evolution"
    FACEBOOK_PAGE = "facebook_page"
    INSTAGRAM_BUSINESS = "instagram_business"


class Direction(str, Enum):
    """Direction of a message relative to the workspace."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageType(str, Enum):
    """Types of stored messages."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    SYSTEM = "system"
    COMMENT = "comment"


class EventType(str, Enum):
    """Kind of canonical event produced by an adapter."""

    MESSAGE = "message"
    COMMENT = "comment"
    REPLY = "reply"


class LiveUpdateType(str, Enum):
    """Discriminator of live update envelopes."""

    NEW_MESSAGE = "new_message"
    MESSAGE_UPDATED = "message_updated"
    CONVERSATION_DELETED = "conversation_deleted"


# Contact handle key per channel family
HANDLE_KEYS: dict[ChannelType, str] = {
    ChannelType.WHATSAPP_EVOLUTION: "wa_id",
    ChannelType.INSTAGRAM_BUSINESS: "ig_id",
    ChannelType.FACEBOOK_PAGE: "fb_psid",
}


def handle_key_for(channel_type: ChannelType | str) -> str:
    """Get the contact handle key used for a channel type."""
    return HANDLE_KEYS[ChannelType(channel_type)]
