"""
Integration Test: Live update stream

The SSE generator is driven directly; an open streaming response would
never finish under the test client.
"""

import asyncio
import uuid

import pytest

from inbox_webhook.sse import CONNECTED_COMMENT, KEEPALIVE_COMMENT, live_event_stream
from messaging_inbox.live.broadcaster import LiveUpdateBroadcaster, format_sse


class FakeRequest:
    """Request stand-in whose client can hang up."""

    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


class TestLiveEventStream:
    @pytest.mark.asyncio
    async def test_stream_lifecycle(self):
        """Connect, receive, keep alive, release the subscription on close."""
        broadcaster = LiveUpdateBroadcaster()
        workspace_id = uuid.uuid4()
        request = FakeRequest()
        stream = live_event_stream(request, broadcaster, workspace_id, keepalive=0.05)

        assert await stream.__anext__() == CONNECTED_COMMENT
        assert broadcaster.subscriber_count(workspace_id) == 1

        broadcaster.publish(workspace_id, "message", {"type": "new_message"})
        assert await stream.__anext__() == format_sse("message", {"type": "new_message"})

        assert await stream.__anext__() == KEEPALIVE_COMMENT

        await stream.aclose()
        assert broadcaster.subscriber_count(workspace_id) == 0

    @pytest.mark.asyncio
    async def test_disconnect_ends_stream(self):
        broadcaster = LiveUpdateBroadcaster()
        workspace_id = uuid.uuid4()
        request = FakeRequest()
        stream = live_event_stream(request, broadcaster, workspace_id, keepalive=0.05)
        await stream.__anext__()

        request.disconnected = True
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(stream.__anext__(), timeout=1)

        assert broadcaster.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_publish_from_other_thread(self):
        """Frames published off the event loop still arrive."""
        broadcaster = LiveUpdateBroadcaster()
        workspace_id = uuid.uuid4()
        stream = live_event_stream(FakeRequest(), broadcaster, workspace_id, keepalive=1)
        await stream.__anext__()

        await asyncio.to_thread(broadcaster.publish, workspace_id, "message", {"n": 1})

        assert await stream.__anext__() == format_sse("message", {"n": 1})
        await stream.aclose()


class TestEventsRoute:
    def test_workspace_required(self, client):
        assert client.get("/events").status_code == 422
