"""
Meta Webhook Normalization

Turns Facebook Page / Instagram webhook deliveries into canonical events,
and implements the subscription handshake and signature check.
"""

import hashlib
import hmac
import logging
from typing import Any

from messaging_inbox.contracts.event_types import ChannelType, Direction, EventType, MessageType
from messaging_inbox.contracts.events import CanonicalEvent, CanonicalMessage, MediaReference
from messaging_inbox.providers.base import from_epoch_millis, from_epoch_seconds, synthesize_message_id

logger = logging.getLogger(__name__)

ATTACHMENT_TYPES = {
    "image": (MessageType.IMAGE, "[Image]"),
    "video": (MessageType.VIDEO, "[Video]"),
    "audio": (MessageType.AUDIO, "[Audio]"),
}


def channel_type_for_object(object_type: str) -> ChannelType:
    """Map the webhook "object" field to the channel type."""
    if object_type == "instagram":
        return ChannelType.INSTAGRAM_BUSINESS
    return ChannelType.FACEBOOK_PAGE


def normalize_meta_webhook(
    payload: dict[str, Any],
    channel_external_id: str,
    channel_type: ChannelType,
) -> list[CanonicalEvent]:
    """
    Normalize a Meta webhook delivery.

    Meta webhook format:
    {
        "object": "page",
        "entry": [{
            "id": "<page id>",
            "messaging": [{"sender": {...}, "recipient": {...}, "timestamp": ..., "message": {...}}],
            "changes": [{"field": "comments", "value": {...}}],
        }]
    }

    Returns:
        One canonical event per direct message or comment, possibly empty
    """
    events: list[CanonicalEvent] = []

    for entry in _as_list(payload.get("entry")):
        if not isinstance(entry, dict):
            continue

        for messaging in _as_list(entry.get("messaging")):
            event = _parse_messaging(messaging, channel_external_id, channel_type)
            if event:
                events.append(event)

        for change in _as_list(entry.get("changes")):
            if isinstance(change, dict) and change.get("field") == "comments":
                event = _parse_comment(change.get("value"), channel_external_id, channel_type)
                if event:
                    events.append(event)

    return events


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _parse_messaging(
    messaging: dict[str, Any],
    channel_external_id: str,
    channel_type: ChannelType,
) -> CanonicalEvent | None:
    """Parse one direct-message event. Read receipts and postbacks are skipped."""
    if not isinstance(messaging, dict) or "read" in messaging or "postback" in messaging:
        return None

    message = messaging.get("message")
    if not isinstance(message, dict) or not message.get("mid"):
        return None

    text = message.get("text")
    if not isinstance(text, str):
        text = None
    message_type = MessageType.TEXT
    media = None

    attachments = _as_list(message.get("attachments"))
    if attachments and isinstance(attachments[0], dict):
        attachment = attachments[0]
        url = _as_dict(attachment.get("payload")).get("url")
        if isinstance(url, str) and url:
            media = MediaReference(url=url)
        message_type, placeholder = ATTACHMENT_TYPES.get(str(attachment.get("type")), (MessageType.TEXT, "[Attachment]"))
        text = text or placeholder

    if not text:
        return None

    # Echoes of the page's own sends come back with sender and recipient swapped
    is_echo = bool(message.get("is_echo"))
    party = _as_dict(messaging.get("recipient" if is_echo else "sender"))
    contact_id = party.get("id")
    if not contact_id:
        return None

    return CanonicalEvent(
        channel_type=channel_type,
        channel_external_id=channel_external_id,
        contact_external_id=str(contact_id),
        event_type=EventType.MESSAGE,
        direction=Direction.OUTBOUND if is_echo else Direction.INBOUND,
        message=CanonicalMessage(
            external_message_id=str(message["mid"]),
            timestamp=from_epoch_millis(messaging.get("timestamp")),
            text=text,
            message_type=message_type,
            media=media,
            raw_payload=messaging,
        ),
    )


def _parse_comment(
    value: Any,
    channel_external_id: str,
    channel_type: ChannelType,
) -> CanonicalEvent | None:
    """Parse a comments change; a parent reference makes it a reply."""
    if not isinstance(value, dict):
        return None

    text = value.get("message") or value.get("text")
    commenter = _as_dict(value.get("from"))
    if not isinstance(text, str) or not text or not commenter.get("id"):
        return None

    comment_id = value.get("comment_id") or value.get("id") or value.get("post_id") or synthesize_message_id("comment")

    return CanonicalEvent(
        channel_type=channel_type,
        channel_external_id=channel_external_id,
        contact_external_id=str(commenter["id"]),
        contact_name=commenter.get("username") or commenter.get("name"),
        event_type=EventType.REPLY if value.get("parent_id") else EventType.COMMENT,
        message=CanonicalMessage(
            external_message_id=str(comment_id),
            timestamp=from_epoch_seconds(value.get("created_time")),
            text=text,
            message_type=MessageType.COMMENT,
            raw_payload=value,
        ),
    )


def verify_webhook_challenge(
    mode: str,
    token: str,
    challenge: str,
    verify_token: str,
) -> str | None:
    """
    Verify webhook subscription (GET request from Meta).

    Returns:
        The challenge to echo back if verification succeeds, None otherwise
    """
    if mode == "subscribe" and verify_token and hmac.compare_digest(token or "", verify_token):
        return challenge
    return None


def validate_signature(
    payload: bytes,
    signature_header: str,
    app_secret: str,
) -> bool:
    """
    Validate Meta webhook signature.

    Args:
        payload: Raw request body bytes
        signature_header: X-Hub-Signature-256 header value
        app_secret: Facebook App Secret

    Returns:
        True if signature is valid
    """
    if not signature_header or not signature_header.startswith("sha256="):
        logger.warning("Missing or malformed signature header")
        return False

    computed = hmac.new(app_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, signature_header[7:])
