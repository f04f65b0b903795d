"""
Server-sent event stream for one debate.

Bridges the in-process EventBus to a long-lived ``text/event-stream``
response: a ``connected`` frame, then every bus event as it is published,
with a ``ping`` frame whenever the debate has been quiet for the keep-alive
interval.
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

from ..engine.events import EventBus
from ..engine.models import now_iso
from ..settings import KEEPALIVE_INTERVAL

logger = logging.getLogger(__name__)


def format_sse(event_type: str, data: Any) -> str:
    """Format one server-sent event frame."""
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


async def event_stream(
    bus: EventBus,
    debate_id: str,
    keepalive: float = KEEPALIVE_INTERVAL,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncGenerator[str, None]:
    """
    Yield SSE frames for a debate until the client goes away.

    The subscription is released when the generator is closed, which is
    what the server does on disconnect.

    Args:
        bus: Event bus to subscribe to
        debate_id: Debate to follow
        keepalive: Seconds of silence before a ping frame is sent
        is_disconnected: Optional check polled between frames

    Yields:
        'event: connected', then 'event: <type>' frames whose data is the
        ``{type, payload, at}`` bus event, and 'event: ping' keep-alives
    """
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    unsubscribe = bus.subscribe(debate_id, queue.put_nowait)
    logger.debug("Stream opened for debate %s", debate_id)

    try:
        yield format_sse("connected", {"debateId": debate_id, "at": now_iso()})

        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield format_sse("ping", {"at": now_iso()})
                continue
            yield format_sse(event["type"], event)
    finally:
        unsubscribe()
        logger.debug("Stream closed for debate %s", debate_id)
