"""Webhook routing to channel accounts."""

from messaging_inbox.routing.channel_resolver import ChannelResolver

__all__ = ["ChannelResolver"]
