"""Meta (Facebook Page / Instagram) adapter."""

from messaging_inbox.providers.meta.client import MetaChannelConfig, MetaGraphClient, send_text_message
from messaging_inbox.providers.meta.webhook import (
    channel_type_for_object,
    normalize_meta_webhook,
    validate_signature,
    verify_webhook_challenge,
)

__all__ = [
    "MetaChannelConfig",
    "MetaGraphClient",
    "send_text_message",
    "channel_type_for_object",
    "normalize_meta_webhook",
    "validate_signature",
    "verify_webhook_challenge",
]
