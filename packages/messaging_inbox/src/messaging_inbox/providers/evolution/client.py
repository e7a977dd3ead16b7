"""
Evolution API Client

REST client for a self-hosted Evolution API (Baileys-based WhatsApp Web
gateway). Each channel account maps to one Evolution instance.

Documentation: https://doc.evolution-api.com/
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from messaging_inbox.providers.base import (
    ProviderConfigError,
    ProviderError,
    SendResult,
    response_body,
    synthesize_message_id,
)
from messaging_inbox.providers.evolution.webhook import find_media, to_remote_jid
from messaging_inbox.security.vault import CredentialVault

logger = logging.getLogger(__name__)

# Route that serves gateway-only media through fetch_media
MEDIA_PROXY_PATH = "/media/evolution"


@dataclass
class EvolutionChannelConfig:
    """Connection settings of an Evolution channel account."""

    api_url: str
    instance_name: str
    encrypted_api_key: str

    @classmethod
    def from_channel_account(cls, account) -> "EvolutionChannelConfig":
        """Build from a ChannelAccount row (config holds base_url and instance_name)."""
        config = account.config or {}
        api_url = config.get("base_url") or config.get("api_url")
        if not api_url:
            raise ProviderConfigError(f"Channel account {account.id} has no Evolution base_url")
        return cls(
            api_url=api_url,
            instance_name=config.get("instance_name") or account.external_id,
            encrypted_api_key=account.encrypted_credential or "",
        )


class EvolutionClient:
    """
    Evolution API client for one instance.

    Every call carries the client timeout; failures surface as ProviderError.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        instance_name: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize Evolution API client.

        Args:
            api_url: Base URL of Evolution API (e.g., "https://evolution-api.example.com")
            api_key: API key for authentication (plaintext)
            instance_name: Name of the Evolution instance
            timeout: HTTP request timeout
            transport: Optional httpx transport (tests)
        """
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.instance_name = instance_name
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "EvolutionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "apikey": self.api_key,
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """Make an authenticated API request."""
        client = await self._get_client()
        url = f"{self.api_url}{endpoint}"

        try:
            response = await client.request(method.upper(), url, json=json_data)
        except httpx.TimeoutException as e:
            logger.error(f"Evolution API timeout: {e}", extra={"instance": self.instance_name})
            raise ProviderError(f"Evolution API timed out: {endpoint}", retryable=True) from e
        except httpx.RequestError as e:
            logger.error(f"HTTP request failed: {e}", extra={"instance": self.instance_name})
            raise ProviderError(f"HTTP request failed: {e}", retryable=True) from e

        body = response_body(response)

        if response.status_code >= 400:
            raise ProviderError(
                message=f"Evolution API error {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
                retryable=response.status_code >= 500,
            )

        return body

    async def send_text(self, number: str, text: str) -> SendResult:
        """Send a text message."""
        response = await self._make_request(
            "POST",
            f"/message/sendText/{self.instance_name}",
            {"number": number, "text": text},
        )
        return self._send_result(response, number)

    async def send_media(
        self,
        number: str,
        media_type: str,
        media: bytes,
        file_name: str,
        mime_type: str,
        caption: str | None = None,
    ) -> SendResult:
        """
        Send a binary attachment.

        Args:
            number: Recipient (bare phone number or JID)
            media_type: image, video, audio or document
            media: Raw file content
            file_name: File name shown to the recipient
            mime_type: MIME type of the content
            caption: Optional caption
        """
        payload: dict[str, Any] = {
            "number": number,
            "mediatype": media_type,
            "mimetype": mime_type,
            "media": base64.b64encode(media).decode("ascii"),
            "fileName": file_name,
        }
        if caption:
            payload["caption"] = caption

        response = await self._make_request("POST", f"/message/sendMedia/{self.instance_name}", payload)
        return self._send_result(response, number)

    def _send_result(self, response: Any, number: str) -> SendResult:
        response = response if isinstance(response, dict) else {}
        message_id = (response.get("key") or {}).get("id")
        if not message_id:
            message_id = synthesize_message_id("sent")
            logger.warning(
                "Evolution send response had no message id, using local id",
                extra={"instance": self.instance_name, "message_id": message_id},
            )

        logger.info(
            "Sent message via Evolution API",
            extra={"to": number, "message_id": message_id, "instance": self.instance_name},
        )

        media = find_media(response)
        return SendResult(
            message_id=message_id,
            media_url=media.url if media else None,
            media_requires_fetch=bool(media and media.requires_fetch),
            raw_response=response,
        )

    async def chat_exists(self, chat_id: str) -> bool:
        """
        Check whether the instance still knows a chat.

        Raises:
            ProviderError: If the gateway fails or answers in an unknown shape
        """
        remote_jid = to_remote_jid(chat_id)
        response = await self._make_request(
            "POST",
            f"/chat/findChats/{self.instance_name}",
            {"where": {"remoteJid": remote_jid}},
        )

        chats = response
        if isinstance(response, dict):
            # Some gateway versions wrap the list
            chats = response.get("chats", response.get("data"))
        if not isinstance(chats, list):
            raise ProviderError("Unexpected findChats response from Evolution API", body=response)

        return any(chat.get("remoteJid", remote_jid) == remote_jid for chat in chats if isinstance(chat, dict))

    async def fetch_media(self, message_key: dict[str, Any]) -> tuple[bytes, str]:
        """
        Download and decrypt the media of a stored message.

        Returns:
            (content, mime_type)
        """
        response = await self._make_request(
            "POST",
            f"/chat/getBase64FromMediaMessage/{self.instance_name}",
            {"message": {"key": message_key}, "convertToMp4": False},
        )
        if not isinstance(response, dict) or not response.get("base64"):
            raise ProviderError("Evolution API returned no media content", body=response)

        content = base64.b64decode(response["base64"])
        return content, response.get("mimetype") or "application/octet-stream"


def media_proxy_path(instance: str, message_id: str) -> str:
    """Path of the media proxy for a stored Evolution message."""
    return str(httpx.URL(MEDIA_PROXY_PATH, params={"instance": instance, "messageId": message_id}))


def build_client(
    config: EvolutionChannelConfig,
    vault: CredentialVault | None,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> EvolutionClient:
    """
    Create a client with the decrypted instance API key.

    Raises:
        ProviderConfigError: If no vault is configured
        DecryptionError: If the stored key cannot be decrypted
    """
    if vault is None:
        raise ProviderConfigError("Credential vault is not configured")
    return EvolutionClient(
        api_url=config.api_url,
        api_key=vault.decrypt(config.encrypted_api_key),
        instance_name=config.instance_name,
        timeout=timeout,
        transport=transport,
    )


async def send_text_message(
    config: EvolutionChannelConfig,
    recipient_external_id: str,
    text: str,
    vault: CredentialVault | None,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SendResult:
    """Send a text message to a WhatsApp contact through the channel's instance."""
    async with build_client(config, vault, timeout, transport) as client:
        return await client.send_text(recipient_external_id, text)


async def send_media_message(
    config: EvolutionChannelConfig,
    recipient_external_id: str,
    media_type: str,
    media: bytes,
    file_name: str,
    mime_type: str,
    vault: CredentialVault | None,
    caption: str | None = None,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SendResult:
    """Send an attachment to a WhatsApp contact through the channel's instance."""
    async with build_client(config, vault, timeout, transport) as client:
        return await client.send_media(recipient_external_id, media_type, media, file_name, mime_type, caption)
