"""
Outbound Message Service

Operator replies: sends through the conversation's channel and records
the outbound message from the provider's synchronous response. The
provider's later echo webhook reconciles against this row by its
external message id.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from messaging_inbox.contracts.event_types import ChannelType, Direction, LiveUpdateType, MessageType, handle_key_for
from messaging_inbox.contracts.payloads import LiveUpdate
from messaging_inbox.live.broadcaster import DEFAULT_EVENT, LiveUpdatePublisher
from messaging_inbox.persistence.models import ChannelAccount, Message, utcnow
from messaging_inbox.persistence.repo import InboxRepository
from messaging_inbox.providers.base import SendResult, is_local_message_id
from messaging_inbox.providers.evolution.client import EvolutionChannelConfig, media_proxy_path
from messaging_inbox.providers.evolution.client import send_media_message as evolution_send_media
from messaging_inbox.providers.evolution.client import send_text_message as evolution_send_text
from messaging_inbox.providers.meta.client import GRAPH_API_VERSION, MetaChannelConfig
from messaging_inbox.providers.meta.client import send_text_message as meta_send_text
from messaging_inbox.security.vault import CredentialVault

logger = logging.getLogger(__name__)

# Body stored for attachments sent without a caption, and the stored type
MEDIA_BODIES = {
    "image": ("[Image]", MessageType.IMAGE),
    "video": ("[Video]", MessageType.VIDEO),
    "audio": ("[Audio]", MessageType.AUDIO),
    "document": ("[Document]", MessageType.TEXT),
}


class ConversationNotFound(LookupError):
    """Conversation does not exist in the workspace."""


class SendValidationError(ValueError):
    """The send request cannot be fulfilled for this conversation."""


@dataclass
class OutboundMedia:
    """Attachment to send."""

    media_type: str  # image, video, audio, document
    content: bytes
    file_name: str
    mime_type: str


class OutboundMessageService:
    """Sends operator replies and records them."""

    def __init__(
        self,
        db: Session,
        vault: CredentialVault | None,
        publisher: LiveUpdatePublisher | None = None,
        timeout: float = 30.0,
        graph_api_version: str = GRAPH_API_VERSION,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.db = db
        self.repo = InboxRepository(db)
        self.vault = vault
        self.publisher = publisher
        self.timeout = timeout
        self.graph_api_version = graph_api_version
        self.transport = transport

    async def send(
        self,
        workspace_id: UUID,
        conversation_id: UUID,
        text: str | None = None,
        media: OutboundMedia | None = None,
    ) -> Message:
        """
        Send a reply in a conversation.

        A message row is recorded only once the provider accepted the send.

        Raises:
            ConversationNotFound: Unknown conversation
            SendValidationError: Nothing to send, or no handle for the channel
            ProviderError: The provider rejected the send or could not be reached
        """
        if not text and media is None:
            raise SendValidationError("Message text or media is required")
        if media is not None and media.media_type not in MEDIA_BODIES:
            raise SendValidationError(f"Unsupported media type: {media.media_type}")

        conversation = self.repo.get_conversation_by_id(workspace_id, conversation_id)
        if conversation is None:
            raise ConversationNotFound(f"Conversation not found: {conversation_id}")

        account = self.repo.get_channel_account_by_id(conversation.channel_account_id)
        contact = self.repo.get_contact_by_id(conversation.contact_id)
        family = handle_key_for(account.type)
        recipient = (contact.handles or {}).get(family) if contact else None
        if not recipient:
            raise SendValidationError(f"Contact has no {family} handle")

        result = await self._dispatch(account, recipient, text, media)

        if media is not None:
            placeholder, message_type = MEDIA_BODIES[media.media_type]
            body = text or placeholder
        else:
            body, message_type = text, MessageType.TEXT

        raw_payload = {
            "provider": account.type,
            "externalMessageId": result.message_id,
            "mediaType": media.media_type if media else None,
            "fileName": media.file_name if media else None,
            "mediaUrl": self._media_link(account, result),
        }

        now = utcnow()
        message = self.repo.create_message(
            workspace_id=workspace_id,
            conversation_id=conversation.id,
            direction=Direction.OUTBOUND.value,
            message_type=message_type.value,
            body=body,
            external_message_id=result.message_id,
            sent_at=now,
            raw_payload={k: v for k, v in raw_payload.items() if v is not None},
        )
        conversation.last_message_at = now
        self.db.commit()

        logger.info(
            "Recorded outbound message",
            extra={
                "workspace_id": str(workspace_id),
                "conversation_id": str(conversation.id),
                "external_message_id": result.message_id,
            },
        )

        if self.publisher is not None:
            update = LiveUpdate(
                type=LiveUpdateType.NEW_MESSAGE,
                conversation_id=conversation.id,
                channel_account_id=account.id,
                message=message.to_dict(),
            )
            self.publisher.publish(workspace_id, DEFAULT_EVENT, update.to_dict())

        return message

    @staticmethod
    def _media_link(account: ChannelAccount, result: SendResult) -> str | None:
        """Link stored for sent media; gateway-only locators are served through the media proxy."""
        if not result.media_url or not result.media_requires_fetch:
            return result.media_url
        if is_local_message_id(result.message_id):
            return None
        return media_proxy_path(account.external_id, result.message_id)

    async def _dispatch(
        self,
        account: ChannelAccount,
        recipient: str,
        text: str | None,
        media: OutboundMedia | None,
    ) -> SendResult:
        """Call the adapter for the account's channel family."""
        if account.type == ChannelType.WHATSAPP_EVOLUTION.value:
            config = EvolutionChannelConfig.from_channel_account(account)
            if media is not None:
                return await evolution_send_media(
                    config,
                    recipient,
                    media.media_type,
                    media.content,
                    media.file_name,
                    media.mime_type,
                    self.vault,
                    caption=text,
                    timeout=self.timeout,
                    transport=self.transport,
                )
            return await evolution_send_text(
                config, recipient, text, self.vault, timeout=self.timeout, transport=self.transport
            )

        if media is not None:
            raise SendValidationError("Attachments can only be sent on WhatsApp channels")

        return await meta_send_text(
            MetaChannelConfig.from_channel_account(account),
            recipient,
            text,
            self.vault,
            api_version=self.graph_api_version,
            timeout=self.timeout,
            transport=self.transport,
        )
