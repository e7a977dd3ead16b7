"""Live update fan-out."""

from messaging_inbox.live.broadcaster import (
    DEFAULT_EVENT,
    LiveUpdateBroadcaster,
    LiveUpdatePublisher,
    format_sse,
)
from messaging_inbox.live.redis_relay import RedisLiveUpdateRelay

__all__ = [
    "DEFAULT_EVENT",
    "LiveUpdateBroadcaster",
    "LiveUpdatePublisher",
    "format_sse",
    "RedisLiveUpdateRelay",
]
