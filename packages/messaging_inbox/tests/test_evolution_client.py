"""
Tests for the Evolution API client.
"""

import base64
import json

import httpx
import pytest

from messaging_inbox.providers.base import LOCAL_ID_PREFIX, ProviderConfigError, ProviderError
from messaging_inbox.providers.evolution import (
    EvolutionChannelConfig,
    EvolutionClient,
    send_media_message,
    send_text_message,
)


def _transport(handler, calls):
    def record(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    return httpx.MockTransport(record)


@pytest.fixture
def config(evolution_account):
    return EvolutionChannelConfig.from_channel_account(evolution_account)


class TestChannelConfig:
    """Config built from channel account rows."""

    def test_from_channel_account(self, evolution_account):
        config = EvolutionChannelConfig.from_channel_account(evolution_account)

        assert config.api_url == "https://evo.example.com"
        assert config.instance_name == "inst1"

    def test_missing_base_url(self, evolution_account):
        """Without a base URL the provider cannot be reached."""
        evolution_account.config = {}

        with pytest.raises(ProviderConfigError):
            EvolutionChannelConfig.from_channel_account(evolution_account)


class TestSendText:
    """Text sends."""

    @pytest.mark.asyncio
    async def test_send_text(self, config, vault):
        """Posts to the instance's sendText endpoint with the decrypted key."""
        calls = []
        transport = _transport(
            lambda request: httpx.Response(201, json={"key": {"id": "BAE5F00D", "fromMe": True}}),
            calls,
        )

        result = await send_text_message(config, "5511999", "Hello", vault, transport=transport)

        assert result.message_id == "BAE5F00D"
        request = calls[0]
        assert request.method == "POST"
        assert str(request.url) == "https://evo.example.com/message/sendText/inst1"
        assert request.headers["apikey"] == "evo-api-key"
        assert json.loads(request.content) == {"number": "5511999", "text": "Hello"}

    @pytest.mark.asyncio
    async def test_missing_id_falls_back_to_local(self, config, vault):
        """Accepted sends without an id get a local id."""
        transport = _transport(lambda request: httpx.Response(200, json={"status": "PENDING"}), [])

        result = await send_text_message(config, "5511999", "Hello", vault, transport=transport)

        assert result.message_id.startswith(LOCAL_ID_PREFIX)

    @pytest.mark.asyncio
    async def test_error_status(self, config, vault):
        """Non-2xx responses raise with status and body."""
        transport = _transport(lambda request: httpx.Response(500, json={"error": "instance down"}), [])

        with pytest.raises(ProviderError) as exc_info:
            await send_text_message(config, "5511999", "Hello", vault, transport=transport)

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == {"error": "instance down"}
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_client_error_not_retryable(self, config, vault):
        transport = _transport(lambda request: httpx.Response(400, text="bad number"), [])

        with pytest.raises(ProviderError) as exc_info:
            await send_text_message(config, "5511999", "Hello", vault, transport=transport)

        assert exc_info.value.status_code == 400
        assert exc_info.value.body == "bad number"
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_timeout(self, config, vault):
        """Timeouts surface as provider errors."""

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderError) as exc_info:
            await send_text_message(config, "5511999", "Hello", vault, transport=_transport(handler, []))

        assert exc_info.value.status_code is None
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_no_vault(self, config):
        """Credentials cannot be decrypted without a vault."""
        with pytest.raises(ProviderConfigError):
            await send_text_message(config, "5511999", "Hello", None)


class TestSendMedia:
    """Attachment sends."""

    @pytest.mark.asyncio
    async def test_send_media(self, config, vault):
        """Content is sent base64 encoded with its metadata."""
        calls = []
        transport = _transport(
            lambda request: httpx.Response(
                201,
                json={"key": {"id": "MEDIA1"}, "message": {"mediaUrl": "https://s3.example.com/a.png"}},
            ),
            calls,
        )

        result = await send_media_message(
            config,
            "5511999",
            "image",
            b"\x89PNG",
            "a.png",
            "image/png",
            vault,
            caption="Look",
            transport=transport,
        )

        assert result.message_id == "MEDIA1"
        assert result.media_url == "https://s3.example.com/a.png"
        body = json.loads(calls[0].content)
        assert str(calls[0].url).endswith("/message/sendMedia/inst1")
        assert body["mediatype"] == "image"
        assert body["mimetype"] == "image/png"
        assert body["fileName"] == "a.png"
        assert body["caption"] == "Look"
        assert base64.b64decode(body["media"]) == b"\x89PNG"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response_body, media_url, requires_fetch",
        [
            ({"mediaUrl": "https://s3.example.com/top.png"}, "https://s3.example.com/top.png", False),
            (
                {"message": {"videoMessage": {"mediaUrl": "https://s3.example.com/v.mp4", "url": "https://mmg.whatsapp.net/v"}}},
                "https://s3.example.com/v.mp4",
                False,
            ),
            ({"message": {"imageMessage": {"url": "https://mmg.whatsapp.net/i.enc"}}}, "https://mmg.whatsapp.net/i.enc", True),
            ({"message": {"audioMessage": {"url": "https://mmg.whatsapp.net/a.enc"}}}, "https://mmg.whatsapp.net/a.enc", True),
            ({"message": {"documentMessage": {"url": "https://mmg.whatsapp.net/d.enc"}}}, "https://mmg.whatsapp.net/d.enc", True),
            ({"message": {"conversation": "no media"}}, None, False),
        ],
    )
    async def test_media_url_from_send_response(self, config, vault, response_body, media_url, requires_fetch):
        """The media locator is read from wherever the gateway put it."""
        transport = _transport(
            lambda request: httpx.Response(201, json={"key": {"id": "MEDIA1"}, **response_body}),
            [],
        )

        result = await send_media_message(config, "5511999", "image", b"x", "x.bin", "image/png", vault, transport=transport)

        assert result.media_url == media_url
        assert result.media_requires_fetch is requires_fetch


class TestChatLookupAndMedia:
    """Chat existence checks and media download."""

    @pytest.mark.asyncio
    async def test_chat_exists(self):
        calls = []
        transport = _transport(
            lambda request: httpx.Response(200, json=[{"remoteJid": "5511999@s.whatsapp.net"}]),
            calls,
        )

        async with EvolutionClient("https://evo.example.com/", "key", "inst1", transport=transport) as client:
            assert await client.chat_exists("5511999") is True

        assert str(calls[0].url) == "https://evo.example.com/chat/findChats/inst1"
        assert json.loads(calls[0].content) == {"where": {"remoteJid": "5511999@s.whatsapp.net"}}

    @pytest.mark.asyncio
    async def test_chat_gone(self):
        """An empty result means the chat no longer exists."""
        transport = _transport(lambda request: httpx.Response(200, json=[]), [])

        async with EvolutionClient("https://evo.example.com", "key", "inst1", transport=transport) as client:
            assert await client.chat_exists("5511999@lid") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body, expected",
        [
            ({"chats": [{"remoteJid": "5511999@s.whatsapp.net"}]}, True),
            ({"chats": []}, False),
            ({"data": [{"remoteJid": "5511999@s.whatsapp.net"}]}, True),
        ],
    )
    async def test_wrapped_chat_list(self, body, expected):
        transport = _transport(lambda request: httpx.Response(200, json=body), [])

        async with EvolutionClient("https://evo.example.com", "key", "inst1", transport=transport) as client:
            assert await client.chat_exists("5511999@s.whatsapp.net") is expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"status": "ok"}, {"chats": "none"}, "OK", None])
    async def test_unknown_shape_raises(self, body):
        """An answer that is not a chat list is never read as "chat gone"."""
        if isinstance(body, str):
            response = httpx.Response(200, text=body)
        else:
            response = httpx.Response(200, json=body)
        transport = _transport(lambda request: response, [])

        async with EvolutionClient("https://evo.example.com", "key", "inst1", transport=transport) as client:
            with pytest.raises(ProviderError, match="Unexpected findChats response"):
                await client.chat_exists("5511999@s.whatsapp.net")

    @pytest.mark.asyncio
    async def test_fetch_media(self):
        """Media is returned decoded with its MIME type."""
        calls = []
        transport = _transport(
            lambda request: httpx.Response(
                200,
                json={"base64": base64.b64encode(b"audio-bytes").decode(), "mimetype": "audio/ogg"},
            ),
            calls,
        )

        async with EvolutionClient("https://evo.example.com", "key", "inst1", transport=transport) as client:
            content, mime_type = await client.fetch_media({"id": "M1", "remoteJid": "5511999@s.whatsapp.net"})

        assert content == b"audio-bytes"
        assert mime_type == "audio/ogg"
        assert json.loads(calls[0].content)["message"]["key"]["id"] == "M1"

    @pytest.mark.asyncio
    async def test_fetch_media_empty(self):
        transport = _transport(lambda request: httpx.Response(200, json={}), [])

        async with EvolutionClient("https://evo.example.com", "key", "inst1", transport=transport) as client:
            with pytest.raises(ProviderError):
                await client.fetch_media({"id": "M1"})
