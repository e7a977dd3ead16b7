"""
Redis Live Update Relay

Cross-instance variant of the broadcaster: publishes go to a Redis pub/sub
channel per workspace, and every server instance runs a listener that
hands received events to its own in-process broadcaster.

Same publish contract as LiveUpdateBroadcaster, still best-effort and
non-durable.
"""

import json
import logging
from typing import Any
from uuid import UUID

import redis
import redis.asyncio as aioredis

from messaging_inbox.live.broadcaster import LiveUpdateBroadcaster

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "inbox:live:"
ALL_WORKSPACES = "__all__"


class RedisLiveUpdateRelay:
    """Publishes live updates through Redis and relays them to local subscribers."""

    def __init__(
        self,
        broadcaster: LiveUpdateBroadcaster,
        redis_client: redis.Redis,
        channel_prefix: str = CHANNEL_PREFIX,
    ):
        self.broadcaster = broadcaster
        self.redis = redis_client
        self.channel_prefix = channel_prefix

    def channel_for(self, workspace_id: UUID | str) -> str:
        """Redis channel of a workspace."""
        return f"{self.channel_prefix}{workspace_id}"

    def subscribe(self, workspace_id: UUID | str, callback):
        """Register a local subscriber (delegates to the broadcaster)."""
        return self.broadcaster.subscribe(workspace_id, callback)

    def publish(self, workspace_id: UUID | str, event_name: str, payload: dict[str, Any]) -> int:
        """
        Publish an event for a workspace on every instance.

        Returns:
            Number of Redis listeners reached, 0 if Redis is unavailable
        """
        return self._send(self.channel_for(workspace_id), event_name, payload)

    def broadcast_all(self, event_name: str, payload: dict[str, Any]) -> int:
        """Publish an event for every workspace on every instance."""
        return self._send(self.channel_for(ALL_WORKSPACES), event_name, payload)

    def _send(self, channel: str, event_name: str, payload: dict[str, Any]) -> int:
        message = json.dumps({"event": event_name, "data": payload}, default=str)
        try:
            return self.redis.publish(channel, message)
        except redis.RedisError as e:
            logger.warning(f"Failed to publish live update: {e}", extra={"channel": channel})
            return 0

    def deliver(self, channel: str, raw_message: str) -> int:
        """Hand one message received from Redis to local subscribers."""
        if not channel.startswith(self.channel_prefix):
            return 0

        try:
            message = json.loads(raw_message)
            event_name = message["event"]
            payload = message["data"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Dropping malformed live update: {e}", extra={"channel": channel})
            return 0

        workspace_key = channel[len(self.channel_prefix):]
        if workspace_key == ALL_WORKSPACES:
            return self.broadcaster.broadcast_all(event_name, payload)
        return self.broadcaster.publish(workspace_key, event_name, payload)

    async def listen(self, client: aioredis.Redis) -> None:
        """
        Relay messages until cancelled.

        Run as a background task for the lifetime of the server.
        """
        pubsub = client.pubsub()
        await pubsub.psubscribe(f"{self.channel_prefix}*")
        logger.info("Live update relay listening", extra={"pattern": f"{self.channel_prefix}*"})

        try:
            async for message in pubsub.listen():
                if message.get("type") == "pmessage":
                    self.deliver(message["channel"], message["data"])
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()
