"""
Live Update Broadcaster

In-process publish/subscribe keyed by workspace. Subscribers are the
connected live-update streams of this server process.

Delivery is fire-and-forget: a viewer not subscribed at publish time never
sees the event, and a failing subscriber never affects the others or the
publisher.
"""

import json
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)

Subscriber = Callable[[str], None]

DEFAULT_EVENT = "message"


def format_sse(event_name: str, payload: dict[str, Any]) -> str:
    """Build a text/event-stream frame."""
    return f"event: {event_name}\ndata: {json.dumps(payload, default=str)}\n\n"


class LiveUpdatePublisher(Protocol):
    """What the processor needs to notify viewers."""

    def publish(self, workspace_id: UUID | str, event_name: str, payload: dict[str, Any]) -> int: ...


class _Subscription:
    __slots__ = ("callback",)

    def __init__(self, callback: Subscriber):
        self.callback = callback


class LiveUpdateBroadcaster:
    """
    Registry of workspace id -> subscriber callbacks.

    One instance per running server, created at start-up and injected into
    handlers. Callbacks receive serialized SSE frames.
    """

    def __init__(self):
        self._subscribers: dict[str, list[_Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, workspace_id: UUID | str, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for a workspace.

        Returns:
            Unsubscribe function; calling it again is a no-op
        """
        key = str(workspace_id)
        subscription = _Subscription(callback)

        with self._lock:
            self._subscribers.setdefault(key, []).append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                subscriptions = self._subscribers.get(key)
                if not subscriptions:
                    return
                # Identity match, equal callbacks registered twice stay independent
                remaining = [s for s in subscriptions if s is not subscription]
                if remaining:
                    self._subscribers[key] = remaining
                else:
                    del self._subscribers[key]

        return unsubscribe

    def publish(self, workspace_id: UUID | str, event_name: str, payload: dict[str, Any]) -> int:
        """
        Deliver an event to every current subscriber of a workspace.

        Returns:
            Number of subscribers that accepted the frame
        """
        with self._lock:
            subscriptions = list(self._subscribers.get(str(workspace_id), ()))

        if not subscriptions:
            return 0

        return self._deliver(subscriptions, format_sse(event_name, payload), str(workspace_id))

    def broadcast_all(self, event_name: str, payload: dict[str, Any]) -> int:
        """Deliver an event to subscribers of every workspace."""
        with self._lock:
            snapshot = {key: list(subs) for key, subs in self._subscribers.items()}

        frame = format_sse(event_name, payload)
        return sum(self._deliver(subs, frame, key) for key, subs in snapshot.items())

    def subscriber_count(self, workspace_id: UUID | str | None = None) -> int:
        """Count subscribers of one workspace, or of all workspaces."""
        with self._lock:
            if workspace_id is not None:
                return len(self._subscribers.get(str(workspace_id), ()))
            return sum(len(subs) for subs in self._subscribers.values())

    def _deliver(self, subscriptions: list[_Subscription], frame: str, workspace_key: str) -> int:
        delivered = 0
        for subscription in subscriptions:
            try:
                subscription.callback(frame)
                delivered += 1
            except Exception as e:
                logger.warning(f"Live update delivery failed: {e}", extra={"workspace_id": workspace_key})
        return delivered
