"""
Meta Graph API Client

Sends page-scoped messages for Facebook Pages and Instagram Business accounts.

Documentation: https://developers.facebook.com/docs/messenger-platform/send-messages
"""

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
from messaging_inbox.security.vault import CredentialVault

logger = logging.getLogger(__name__)

GRAPH_API_VERSION = "v18.0"
GRAPH_API_HOST = "https://graph.facebook.com"


@dataclass
class MetaChannelConfig:
    """Connection settings of a Facebook Page or Instagram channel account."""

    encrypted_access_token: str
    page_id: str | None = None

    @classmethod
    def from_channel_account(cls, account) -> "MetaChannelConfig":
        """Build from a ChannelAccount row (config may hold page_id)."""
        config = account.config or {}
        return cls(
            encrypted_access_token=account.encrypted_credential or "",
            page_id=config.get("page_id") or account.external_id,
        )


class MetaGraphClient:
    """Graph API client authenticated with a page access token."""

    def __init__(
        self,
        access_token: str,
        api_version: str = GRAPH_API_VERSION,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token
        self.base_url = f"{GRAPH_API_HOST}/{api_version}"
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "MetaGraphClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _make_request(self, endpoint: str, json_data: dict[str, Any]) -> dict[str, Any]:
        """POST to the Graph API with bearer auth."""
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {self.access_token}"}

        try:
            response = await client.post(f"{self.base_url}{endpoint}", json=json_data, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Graph API timeout: {e}")
            raise ProviderError(f"Graph API timed out: {endpoint}", retryable=True) from e
        except httpx.RequestError as e:
            logger.error(f"HTTP request failed: {e}")
            raise ProviderError(f"HTTP request failed: {e}", retryable=True) from e

        body = response_body(response)

        if response.status_code >= 400:
            error = body.get("error", {}) if isinstance(body, dict) else {}
            raise ProviderError(
                message=f"Graph API error {response.status_code}: {error.get('message') or body}",
                status_code=response.status_code,
                body=body,
                retryable=response.status_code >= 500,
            )

        return body if isinstance(body, dict) else {}

    async def send_text(self, page_id: str, recipient_id: str, text: str) -> SendResult:
        """Send a text reply to a user who messaged the page."""
        response = await self._make_request(
            f"/{page_id}/messages",
            {
                "recipient": {"id": recipient_id},
                "message": {"text": text},
                "messaging_type": "RESPONSE",
            },
        )

        message_id = response.get("message_id")
        if not message_id:
            message_id = synthesize_message_id("sent")
            logger.warning("Graph API response had no message_id, using local id", extra={"page_id": page_id})

        logger.info(
            "Sent message via Graph API",
            extra={"page_id": page_id, "recipient_id": recipient_id, "message_id": message_id},
        )
        return SendResult(message_id=message_id, raw_response=response)


async def send_text_message(
    config: MetaChannelConfig,
    recipient_id: str,
    text: str,
    vault: CredentialVault | None,
    page_id: str | None = None,
    api_version: str = GRAPH_API_VERSION,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SendResult:
    """
    Send a direct message through a page.

    Raises:
        ProviderConfigError: If no page id or vault is available
        ProviderError: On a non-2xx response or transport failure
    """
    if vault is None:
        raise ProviderConfigError("Credential vault is not configured")

    page_id = page_id or config.page_id
    if not page_id:
        raise ProviderConfigError("Page ID is required to send Meta messages")

    client = MetaGraphClient(vault.decrypt(config.encrypted_access_token), api_version, timeout, transport)
    async with client:
        return await client.send_text(page_id, recipient_id, text)
