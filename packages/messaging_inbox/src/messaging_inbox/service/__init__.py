"""Inbox services."""

from messaging_inbox.service.chat_deletion import ChatDeletionHandler
from messaging_inbox.service.inbound_processor import ChannelAccountNotFound, InboundEventProcessor, ProcessResult
from messaging_inbox.service.ingestion import IngestOutcome, WebhookIngestor
from messaging_inbox.service.outbound import (
    ConversationNotFound,
    OutboundMedia,
    OutboundMessageService,
    SendValidationError,
)

__all__ = [
    "ChatDeletionHandler",
    "ChannelAccountNotFound",
    "InboundEventProcessor",
    "ProcessResult",
    "IngestOutcome",
    "WebhookIngestor",
    "ConversationNotFound",
    "OutboundMedia",
    "OutboundMessageService",
    "SendValidationError",
]
