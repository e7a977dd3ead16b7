"""
Channel Providers

Adapters between provider wire formats and the canonical event/send model.
"""

from messaging_inbox.providers.base import (
    LOCAL_ID_PREFIX,
    ProviderConfigError,
    ProviderError,
    is_local_message_id,
)

__all__ = [
    "LOCAL_ID_PREFIX",
    "ProviderConfigError",
    "ProviderError",
    "is_local_message_id",
]
