"""Evolution API (WhatsApp) adapter."""

from messaging_inbox.providers.evolution.client import (
    EvolutionChannelConfig,
    EvolutionClient,
    SendResult,
    build_client,
    send_media_message,
    send_text_message,
)
from messaging_inbox.providers.evolution.webhook import (
    EvolutionEventCategory,
    bare_contact_id,
    classify_event,
    normalize_evolution_webhook,
    parse_chat_deletion,
    validate_api_key,
)

__all__ = [
    "EvolutionChannelConfig",
    "EvolutionClient",
    "SendResult",
    "build_client",
    "send_media_message",
    "send_text_message",
    "EvolutionEventCategory",
    "bare_contact_id",
    "classify_event",
    "normalize_evolution_webhook",
    "parse_chat_deletion",
    "validate_api_key",
]
