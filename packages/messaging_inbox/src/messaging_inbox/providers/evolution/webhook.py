"""
Evolution API Webhook Normalization

Classifies Evolution event names and turns message events into
canonical events. Event names arrive inconsistently cased and spelled
depending on gateway version and webhook mode ("messages.upsert",
"MESSAGES_UPSERT", ...), so every decision goes through classify_event.
"""

import hmac
import logging
from enum import Enum
from typing import Any

from messaging_inbox.contracts.event_types import ChannelType, Direction, EventType, MessageType
from messaging_inbox.contracts.events import (
    CanonicalEvent,
    CanonicalMessage,
    ChatDeletionEvent,
    MediaReference,
)
from messaging_inbox.providers.base import from_epoch_seconds, synthesize_message_id

logger = logging.getLogger(__name__)


class EvolutionEventCategory(str, Enum):
    """How the webhook endpoint should route an Evolution event."""

    MESSAGE = "message"
    CHAT_DELETED = "chat_deleted"
    DELETION_HINT = "deletion_hint"
    IGNORED = "ignored"


MESSAGE_EVENTS = frozenset({
    "messages.upsert",
    "messages.update",
    "send.message",
})

CHAT_DELETION_EVENTS = frozenset({
    "chats.delete",
    "chat.delete",
    "chats.deleted",
    "chat.deleted",
    "delete.chat",
    "chatsdelete",
    "chatdelete",
})

# Housekeeping events that mention chats but never signal a deletion
IGNORED_EVENTS = frozenset({
    "application.startup",
    "qrcode.updated",
    "connection.update",
    "presence.update",
    "contacts.set",
    "contacts.upsert",
    "contacts.update",
    "chats.set",
    "chats.upsert",
    "messages.set",
    "groups.upsert",
    "groups.update",
    "group.participants.update",
    "labels.edit",
    "labels.association",
    "call",
})

# (message key, stored type, placeholder body)
MEDIA_KINDS = (
    ("imageMessage", MessageType.IMAGE, "[Image]"),
    ("videoMessage", MessageType.VIDEO, "[Video]"),
    ("audioMessage", MessageType.AUDIO, "[Audio]"),
    ("documentMessage", MessageType.TEXT, "[Document]"),
)

WHATSAPP_USER_SUFFIX = "@s.whatsapp.net"


def canonical_event_name(event: str | None) -> str:
    """Lower-case an event name and unify separators ("CHATS_DELETE" -> "chats.delete")."""
    return (event or "").strip().lower().replace("_", ".").replace("-", ".")


def classify_event(event: str | None) -> EvolutionEventCategory:
    """
    Decide how an Evolution event must be handled.

    Known message events are normalized. Known chat deletion spellings are
    deletions. Any other name mentioning "delete" or "chat" is treated as a
    deletion hint, to be confirmed with a provider existence check.
    Everything else is acknowledged and ignored.
    """
    name = canonical_event_name(event)

    if name in MESSAGE_EVENTS:
        return EvolutionEventCategory.MESSAGE
    if name in CHAT_DELETION_EVENTS:
        return EvolutionEventCategory.CHAT_DELETED
    if not name or name in IGNORED_EVENTS:
        return EvolutionEventCategory.IGNORED
    if "delete" in name or "chat" in name:
        return EvolutionEventCategory.DELETION_HINT
    return EvolutionEventCategory.IGNORED


def bare_contact_id(remote_jid: str | None) -> str:
    """
    Strip the JID server suffix and device segment.

    "5511999:42@s.whatsapp.net" -> "5511999"
    """
    if not isinstance(remote_jid, str):
        return ""
    return remote_jid.split("@", 1)[0].split(":", 1)[0].strip()


def to_remote_jid(chat_id: str) -> str:
    """Restore a full JID from a bare contact id."""
    return chat_id if "@" in chat_id else f"{chat_id}{WHATSAPP_USER_SUFFIX}"


def normalize_evolution_webhook(
    payload: dict[str, Any],
    channel_external_id: str,
) -> CanonicalEvent | None:
    """
    Normalize an Evolution message webhook.

    Evolution API webhook format:
    {
        "event": "messages.upsert",
        "instance": "instance_name",
        "data": {
            "key": {"id": "...", "remoteJid": "...", "fromMe": false},
            "message": {...},
            "messageTimestamp": 1234567890,
            "pushName": "...",
        }
    }

    Returns:
        CanonicalEvent, or None when the event carries no message content
    """
    if classify_event(payload.get("event")) != EvolutionEventCategory.MESSAGE:
        return None

    data = payload.get("data")
    if not isinstance(data, dict):
        return None

    key = data.get("key")
    message = data.get("message")
    if not isinstance(key, dict) or not isinstance(message, dict):
        # messages.update acks carry a key and a status but no message
        return None

    contact_id = bare_contact_id(key.get("remoteJid"))
    if not contact_id:
        return None

    text, message_type, media = _extract_content(message, data)
    if text is None and media is None:
        return None

    return CanonicalEvent(
        channel_type=ChannelType.WHATSAPP_EVOLUTION,
        channel_external_id=channel_external_id,
        contact_external_id=contact_id,
        event_type=EventType.MESSAGE,
        direction=Direction.OUTBOUND if key.get("fromMe") else Direction.INBOUND,
        contact_name=_str(data.get("pushName")),
        message=CanonicalMessage(
            external_message_id=str(key.get("id") or synthesize_message_id()),
            # Absent provider timestamps fall back to receipt time
            timestamp=from_epoch_seconds(data.get("messageTimestamp")),
            text=text,
            message_type=message_type,
            media=media,
            raw_payload=payload,
        ),
    )


def _extract_content(
    message: dict[str, Any],
    data: dict[str, Any],
) -> tuple[str | None, MessageType, MediaReference | None]:
    """Get (body, type, media) by content priority."""
    conversation = _str(message.get("conversation"))
    if conversation:
        return conversation, MessageType.TEXT, None

    extended = message.get("extendedTextMessage")
    if isinstance(extended, dict) and _str(extended.get("text")):
        return extended["text"], MessageType.TEXT, None

    for media_key, message_type, placeholder in MEDIA_KINDS:
        sub = message.get(media_key)
        if not isinstance(sub, dict):
            continue
        media = _resolve_media(message, data, sub)
        if media_key == "documentMessage":
            body = _str(sub.get("fileName")) or _str(sub.get("caption")) or placeholder
        else:
            body = _str(sub.get("caption")) or placeholder
        return body, message_type, media

    media = _resolve_media(message, data, {})
    if media:
        message_type = {kind: mtype for kind, mtype, _ in MEDIA_KINDS}.get(
            str(data.get("messageType", "")), MessageType.TEXT
        )
        return None, message_type, media

    return None, MessageType.TEXT, None


def _resolve_media(
    message: dict[str, Any],
    data: dict[str, Any],
    sub: dict[str, Any],
) -> MediaReference | None:
    """
    Pick the media locator.

    Gateway-resolved URLs (object storage) win over the WhatsApp-internal
    url, which is encrypted and only readable through the gateway.
    """
    for candidate in (message.get("mediaUrl"), data.get("mediaUrl"), sub.get("mediaUrl")):
        if isinstance(candidate, str) and candidate:
            return MediaReference(url=candidate, requires_fetch=not _is_direct_url(candidate))

    internal = _str(sub.get("url")) or _str(sub.get("directPath"))
    if internal:
        return MediaReference(url=internal, requires_fetch=True)

    return None


def find_media(data: dict[str, Any]) -> MediaReference | None:
    """
    Locate the media of a message record.

    Works on webhook data and on send responses, which share the
    {"key", "message", "mediaUrl"} shape.
    """
    message = data.get("message")
    if not isinstance(message, dict):
        message = {}
    for media_key, _, _ in MEDIA_KINDS:
        sub = message.get(media_key)
        if isinstance(sub, dict):
            return _resolve_media(message, data, sub)
    return _resolve_media(message, data, {})


def _str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _is_direct_url(url: str) -> bool:
    return url.startswith(("http://", "https://")) and "whatsapp.net" not in url


def parse_chat_deletion(
    payload: dict[str, Any],
    channel_external_id: str,
    confirmed: bool = True,
) -> ChatDeletionEvent:
    """
    Collect the chat ids referenced by a deletion (or deletion hint) event.

    The data field may be a list of JIDs, a list of chat objects, a single
    chat object, or an object wrapping one of those.
    """
    chat_ids: list[str] = []
    _collect_chat_ids(payload.get("data"), chat_ids)

    unique: list[str] = []
    for chat_id in chat_ids:
        if chat_id and chat_id not in unique:
            unique.append(chat_id)

    return ChatDeletionEvent(
        channel_type=ChannelType.WHATSAPP_EVOLUTION,
        channel_external_id=channel_external_id,
        chat_ids=unique,
        confirmed=confirmed,
        raw_payload=payload,
    )


def _collect_chat_ids(value: Any, out: list[str]) -> None:
    if isinstance(value, str):
        out.append(value.strip())
    elif isinstance(value, list):
        for item in value:
            _collect_chat_ids(item, out)
    elif isinstance(value, dict):
        for field in ("remoteJid", "jid", "chatId", "id"):
            if isinstance(value.get(field), str):
                out.append(value[field].strip())
                return
        key = value.get("key")
        if isinstance(key, dict) and isinstance(key.get("remoteJid"), str):
            out.append(key["remoteJid"].strip())
            return
        for field in ("chats", "remoteJids", "ids"):
            if field in value:
                _collect_chat_ids(value[field], out)


def validate_api_key(request_headers: dict[str, str], expected_api_key: str) -> bool:
    """
    Validate API key from request headers.

    Evolution API can send API key in:
    - Header: "apikey"
    - Header: "Authorization: Bearer <key>"
    """
    headers = {k.lower(): v for k, v in request_headers.items()}

    apikey_header = headers.get("apikey", "")
    if apikey_header and hmac.compare_digest(apikey_header, expected_api_key):
        return True

    auth_header = headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return hmac.compare_digest(auth_header[7:], expected_api_key)

    return False
