"""
Tests for Evolution API webhook normalization and classification.
"""

from datetime import datetime, timezone

import pytest

from messaging_inbox.contracts.event_types import ChannelType, Direction, EventType, MessageType
from messaging_inbox.providers.base import LOCAL_ID_PREFIX
from messaging_inbox.providers.evolution.webhook import (
    EvolutionEventCategory,
    bare_contact_id,
    classify_event,
    normalize_evolution_webhook,
    parse_chat_deletion,
    validate_api_key,
)


def _webhook(message, key=None, event="messages.upsert", **data):
    return {
        "event": event,
        "instance": "inst1",
        "data": {
            "key": key or {"id": "MSG1", "remoteJid": "5511999@s.whatsapp.net", "fromMe": False},
            "message": message,
            "messageTimestamp": 1700000000,
            **data,
        },
    }


class TestJidNormalization:
    """Remote JIDs reduce to the bare contact id."""

    @pytest.mark.parametrize(
        "jid",
        ["5511999@s.whatsapp.net", "5511999@lid", "5511999:42@s.whatsapp.net", "5511999"],
    )
    def test_bare_contact_id(self, jid):
        """Server suffix and device segment are stripped."""
        assert bare_contact_id(jid) == "5511999"

    def test_empty(self):
        """Missing JIDs give an empty id."""
        assert bare_contact_id(None) == ""


class TestClassifyEvent:
    """Every observed spelling of Evolution event names."""

    @pytest.mark.parametrize(
        "event",
        ["messages.upsert", "MESSAGES_UPSERT", "messages.update", "MESSAGES_UPDATE", "send.message", "SEND_MESSAGE"],
    )
    def test_message_events(self, event):
        """Message events are normalized."""
        assert classify_event(event) == EvolutionEventCategory.MESSAGE

    @pytest.mark.parametrize("event", ["chats.delete", "CHATS_DELETE", "Chats.Delete", "chat.deleted", "chats-delete"])
    def test_chat_deletion_spellings(self, event):
        """Known deletion spellings are deletions, whatever the case."""
        assert classify_event(event) == EvolutionEventCategory.CHAT_DELETED

    @pytest.mark.parametrize("event", ["chats.update", "CHATS_UPDATE", "messages.delete", "conversation.delete"])
    def test_deletion_hints(self, event):
        """Other names mentioning chat or delete are deletion hints."""
        assert classify_event(event) == EvolutionEventCategory.DELETION_HINT

    @pytest.mark.parametrize(
        "event",
        [
            "presence.update",
            "PRESENCE_UPDATE",
            "connection.update",
            "contacts.upsert",
            "chats.set",
            "CHATS_UPSERT",
            "qrcode.updated",
            "logout.instance",
            "",
            None,
        ],
    )
    def test_ignored_events(self, event):
        """Presence, connection, contact sync and chat list sync are ignored."""
        assert classify_event(event) == EvolutionEventCategory.IGNORED


class TestNormalizeMessages:
    """Message payloads to canonical events."""

    def test_inbound_text_scenario(self, evolution_text_webhook):
        """Plain inbound text becomes an inbound text event."""
        event = normalize_evolution_webhook(evolution_text_webhook, "inst1")

        assert event.channel_type == ChannelType.WHATSAPP_EVOLUTION
        assert event.channel_external_id == "inst1"
        assert event.direction == Direction.INBOUND
        assert event.event_type == EventType.MESSAGE
        assert event.contact_external_id == "5511999"
        assert event.contact_name == "Maria"
        assert event.message.text == "Hi"
        assert event.message.message_type == MessageType.TEXT
        assert event.message.external_message_id == "3EB0C0FFEE"
        assert event.message.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        assert event.message.raw_payload is evolution_text_webhook

    def test_from_me_is_outbound(self):
        """fromMe marks the operator's own messages."""
        payload = _webhook(
            {"conversation": "Hello"},
            key={"id": "OUT1", "remoteJid": "5511999:3@s.whatsapp.net", "fromMe": True},
            event="send.message",
        )

        event = normalize_evolution_webhook(payload, "inst1")

        assert event.direction == Direction.OUTBOUND
        assert event.contact_external_id == "5511999"

    def test_extended_text(self):
        """Quoted/extended text is used when there is no plain text."""
        event = normalize_evolution_webhook(_webhook({"extendedTextMessage": {"text": "Quoted"}}), "inst1")

        assert event.message.text == "Quoted"
        assert event.message.message_type == MessageType.TEXT

    def test_image_with_caption_and_resolved_url(self):
        """A gateway-resolved URL is used directly."""
        payload = _webhook(
            {
                "imageMessage": {"caption": "Look", "url": "https://mmg.whatsapp.net/o1/v/t62/abc.enc"},
                "mediaUrl": "https://bucket.s3.amazonaws.com/inst1/abc.jpg",
            }
        )

        event = normalize_evolution_webhook(payload, "inst1")

        assert event.message.message_type == MessageType.IMAGE
        assert event.message.text == "Look"
        assert event.message.media.url == "https://bucket.s3.amazonaws.com/inst1/abc.jpg"
        assert event.message.media.requires_fetch is False

    def test_data_level_media_url(self):
        """mediaUrl next to the message is also a resolved URL."""
        payload = _webhook(
            {"videoMessage": {"url": "https://mmg.whatsapp.net/v.enc"}},
            mediaUrl="https://cdn.example.com/v.mp4",
        )

        event = normalize_evolution_webhook(payload, "inst1")

        assert event.message.message_type == MessageType.VIDEO
        assert event.message.text == "[Video]"
        assert event.message.media.url == "https://cdn.example.com/v.mp4"

    def test_internal_url_requires_fetch(self):
        """The encrypted WhatsApp URL can only be read through the gateway."""
        payload = _webhook({"audioMessage": {"url": "https://mmg.whatsapp.net/a.enc", "seconds": 4}})

        event = normalize_evolution_webhook(payload, "inst1")

        assert event.message.message_type == MessageType.AUDIO
        assert event.message.text == "[Audio]"
        assert event.message.media.requires_fetch is True

    def test_image_placeholder(self):
        """Images without caption get a placeholder body."""
        event = normalize_evolution_webhook(_webhook({"imageMessage": {"url": "https://mmg.whatsapp.net/i.enc"}}), "inst1")

        assert event.message.text == "[Image]"

    def test_document_degrades_to_text(self):
        """Documents are text messages named after the file."""
        payload = _webhook({"documentMessage": {"fileName": "invoice.pdf", "url": "https://mmg.whatsapp.net/d.enc"}})

        event = normalize_evolution_webhook(payload, "inst1")

        assert event.message.message_type == MessageType.TEXT
        assert event.message.text == "invoice.pdf"
        assert event.message.media is not None

    def test_no_content_is_dropped(self):
        """Messages with neither text nor media normalize to None."""
        assert normalize_evolution_webhook(_webhook({"reactionMessage": {"text": "👍"}}), "inst1") is None

    def test_status_update_without_message(self):
        """messages.update acks carry no message."""
        payload = {
            "event": "messages.update",
            "instance": "inst1",
            "data": {"key": {"id": "MSG1", "remoteJid": "5511999@s.whatsapp.net"}, "update": {"status": "READ"}},
        }

        assert normalize_evolution_webhook(payload, "inst1") is None

    def test_non_message_event(self):
        """Other events are not normalized."""
        payload = _webhook({"conversation": "Hi"}, event="presence.update")

        assert normalize_evolution_webhook(payload, "inst1") is None

    @pytest.mark.parametrize("timestamp", ["1700000000", "1700000000.0", 1700000000000])
    def test_timestamp_variants(self, timestamp):
        """String, fractional and millisecond timestamps resolve to the same instant."""
        event = normalize_evolution_webhook(_webhook({"conversation": "Hi"}, messageTimestamp=timestamp), "inst1")

        assert event.message.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_non_string_text_ignored(self):
        """Wrongly typed content is treated as absent."""
        payload = _webhook({"conversation": 42, "extendedTextMessage": {"text": ["Hi"]}})

        assert normalize_evolution_webhook(payload, "inst1") is None

    def test_missing_timestamp_uses_now(self):
        """Receipt time replaces an absent provider timestamp."""
        payload = _webhook({"conversation": "Hi"})
        del payload["data"]["messageTimestamp"]
        before = datetime.now(timezone.utc)

        event = normalize_evolution_webhook(payload, "inst1")

        assert event.message.timestamp >= before

    def test_missing_id_is_local(self):
        """A synthesized id never looks like a provider id."""
        payload = _webhook({"conversation": "Hi"}, key={"remoteJid": "5511999@s.whatsapp.net", "fromMe": False})

        event = normalize_evolution_webhook(payload, "inst1")

        assert event.message.external_message_id.startswith(LOCAL_ID_PREFIX)


class TestParseChatDeletion:
    """Chat ids in deletion payloads."""

    def test_list_of_jids(self):
        """A plain list of JIDs."""
        event = parse_chat_deletion(
            {"event": "chats.delete", "instance": "inst1", "data": ["5511999@lid", "5511888@s.whatsapp.net"]},
            "inst1",
        )

        assert event.chat_ids == ["5511999@lid", "5511888@s.whatsapp.net"]
        assert event.confirmed is True

    def test_list_of_chat_objects(self):
        """Chat objects carry remoteJid or id."""
        event = parse_chat_deletion(
            {"data": [{"remoteJid": "5511999@lid"}, {"id": "5511888@s.whatsapp.net"}, {"remoteJid": "5511999@lid"}]},
            "inst1",
        )

        assert event.chat_ids == ["5511999@lid", "5511888@s.whatsapp.net"]

    def test_single_object_and_hint(self):
        """A single chat object, flagged as unconfirmed."""
        event = parse_chat_deletion({"data": {"remoteJid": "5511999@s.whatsapp.net"}}, "inst1", confirmed=False)

        assert event.chat_ids == ["5511999@s.whatsapp.net"]
        assert event.confirmed is False

    def test_message_key_shape(self):
        """Message-shaped payloads reference the chat through their key."""
        event = parse_chat_deletion({"data": {"key": {"remoteJid": "5511999@s.whatsapp.net", "id": "M"}}}, "inst1")

        assert event.chat_ids == ["5511999@s.whatsapp.net"]

    def test_no_data(self):
        """No data, no chats."""
        assert parse_chat_deletion({"event": "chats.delete"}, "inst1").chat_ids == []


class TestValidateApiKey:
    """Webhook API key check."""

    def test_apikey_header(self):
        assert validate_api_key({"apikey": "secret"}, "secret")

    def test_bearer_header(self):
        assert validate_api_key({"Authorization": "Bearer secret"}, "secret")

    def test_wrong_key(self):
        assert not validate_api_key({"apikey": "nope"}, "secret")
        assert not validate_api_key({}, "secret")
