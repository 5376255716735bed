"""SSE streaming endpoint for live NAV updates."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from .bus import Topic, UpdateBus
from .models import NAVResult

logger = logging.getLogger(__name__)

STREAM_TOPICS = (Topic.NAV_UPDATED, Topic.PORTFOLIO_UPDATED, Topic.CURRENCY_CHANGED)


def create_stream_router(bus: UpdateBus) -> APIRouter:
    """Create the SSE router bound to an UpdateBus.

    This factory pattern lets us inject the bus without globals.
    """
    router = APIRouter(prefix="/api/stream", tags=["streaming"])

    @router.get("/nav")
    async def stream_nav(request: Request) -> StreamingResponse:
        """SSE endpoint for NAV, portfolio and currency updates.

        Events are named after their topic:

            event: nav_updated
            data: {"nav_sats": 534480000, "price_per_token": 254, ...}
        """
        return StreamingResponse(
            _generate_events(bus, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    return router


def _encode(topic: Topic, payload: Any) -> str:
    data = payload.to_dict() if isinstance(payload, NAVResult) else payload
    return f"event: {topic.value}\ndata: {json.dumps(data)}\n\n"


async def _generate_events(
    bus: UpdateBus,
    request: Request,
    poll_interval: float = 0.5,
) -> AsyncGenerator[str, None]:
    """Yield SSE events for each bus delivery until the client disconnects.

    The bus already debounces, so every delivery is forwarded. Listeners are
    removed in ``finally`` so a dropped client leaves nothing behind.
    """
    # Tell the client to retry after 1 second if the connection drops
    yield "retry: 1000\n\n"

    queue: asyncio.Queue[tuple[Topic, Any]] = asyncio.Queue(maxsize=100)
    client_ip = request.client.host if request.client else "unknown"

    def _enqueue(topic: Topic):
        def listener(payload: Any) -> None:
            if queue.full():
                queue.get_nowait()  # Slow client: drop the oldest event
            queue.put_nowait((topic, payload))

        return listener

    subscriptions = [bus.subscribe(topic, _enqueue(topic)) for topic in STREAM_TOPICS]
    logger.info("SSE client connected: %s", client_ip)

    try:
        latest = bus.latest(Topic.NAV_UPDATED)
        if latest is not None:
            yield _encode(Topic.NAV_UPDATED, latest)

        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break
            try:
                topic, payload = await asyncio.wait_for(queue.get(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue
            yield _encode(topic, payload)
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
    finally:
        for subscription in subscriptions:
            subscription.unsubscribe()
