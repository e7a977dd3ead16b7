"""
Inbox Payload Models

Pydantic models for webhook envelopes, the send endpoint and live updates.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from messaging_inbox.contracts.event_types import LiveUpdateType


class EvolutionWebhookPayload(BaseModel):
    """Top-level envelope of an Evolution API webhook."""

    model_config = ConfigDict(extra="allow")

    event: str = Field("", description="Event name, e.g. messages.upsert")
    instance: str = Field(..., min_length=1, description="Evolution instance name")
    data: Any = Field(None, description="Event data, object or list depending on event")


class MetaWebhookPayload(BaseModel):
    """Top-level envelope of a Meta (Page/Instagram) webhook."""

    model_config = ConfigDict(extra="allow")

    object: Literal["page", "instagram"] = Field(..., description="Subscribed object")
    entry: list[dict[str, Any]] = Field(default_factory=list, description="Page-level entries")


class SendMessageRequest(BaseModel):
    """Operator request to reply in a conversation."""

    model_config = ConfigDict(populate_by_name=True)

    workspace_id: UUID = Field(..., alias="workspaceId")
    conversation_id: UUID = Field(..., alias="conversationId")
    text: str | None = Field(None, description="Message text or media caption")
    media_base64: str | None = Field(None, alias="mediaBase64", description="Attachment content")
    media_type: Literal["image", "video", "audio", "document"] | None = Field(None, alias="mediaType")
    file_name: str | None = Field(None, alias="fileName")
    mime_type: str | None = Field(None, alias="mimeType")


class LiveUpdate(BaseModel):
    """
    Envelope pushed to live viewers.

    Serialized with camelCase keys; unset fields are omitted.
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    type: LiveUpdateType
    conversation_id: UUID | None = Field(None, alias="conversationId")
    channel_account_id: UUID | None = Field(None, alias="channelAccountId")
    message: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def isoformat(value: datetime | None) -> str | None:
    """Format a datetime for JSON output."""
    return value.isoformat() if value else None
