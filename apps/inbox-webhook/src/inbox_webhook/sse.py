"""
Live update stream.

Bridges broadcaster callbacks (any thread) to one text/event-stream response.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from uuid import UUID

from fastapi import Request

from messaging_inbox.live.broadcaster import LiveUpdateBroadcaster

logger = logging.getLogger(__name__)

CONNECTED_COMMENT = ": connected\n\n"
KEEPALIVE_COMMENT = ": keep-alive\n\n"


async def live_event_stream(
    request: Request,
    broadcaster: LiveUpdateBroadcaster,
    workspace_id: UUID,
    keepalive: float = 15.0,
) -> AsyncIterator[str]:
    """
    Yield SSE frames for a workspace until the client disconnects.

    The subscription is released exactly once when the stream ends,
    whether the client went away or the response was cancelled.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str] = asyncio.Queue()

    def enqueue(frame: str) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, frame)

    unsubscribe = broadcaster.subscribe(workspace_id, enqueue)
    logger.info("Live update viewer connected", extra={"workspace_id": str(workspace_id)})

    try:
        yield CONNECTED_COMMENT
        while not await request.is_disconnected():
            try:
                frame = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield KEEPALIVE_COMMENT
                continue
            yield frame
    finally:
        unsubscribe()
        logger.info("Live update viewer disconnected", extra={"workspace_id": str(workspace_id)})
