"""
Server-Sent Events stream of tracking notifications.

A registered subscriber opens ``/api/subscribers/{id}/events`` and
receives one ``trackingNotification`` event per recorded tracker.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any

import fastapi
from starlette import responses

from trackingtracker.routes.api import get_service
from trackingtracker.service import TrackerService
from trackingtracker.utils import errors, logger

log = logger.create_logger("Events")

router = fastapi.APIRouter(prefix="/api")

# Idle streams send a comment line this often to keep proxies from closing them.
_KEEPALIVE_SECONDS = 15.0


def format_sse_event(event_type: str, data: dict[str, Any]) -> str:
    """Format a Server-Sent Event string."""
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


async def notification_stream(
    service: TrackerService,
    subscriber_id: str,
    keepalive: float = _KEEPALIVE_SECONDS,
) -> AsyncGenerator[str]:
    """Yield SSE-formatted notifications for one subscriber until cancelled."""
    queue = service.subscribers.listen(subscriber_id)
    log.info("Subscriber stream opened", {"id": subscriber_id})
    try:
        while True:
            try:
                notification = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse_event(notification.type, notification.model_dump(by_alias=True))
    finally:
        service.subscribers.stop_listening(subscriber_id)
        log.info("Subscriber stream closed", {"id": subscriber_id})


@router.get("/subscribers/{subscriber_id}/events")
async def subscriber_events(
    subscriber_id: str,
    service: TrackerService = fastapi.Depends(get_service),
) -> responses.StreamingResponse:
    """Stream ``trackingNotification`` events to a registered subscriber."""
    if subscriber_id not in service.get_registered_subscribers():
        raise fastapi.HTTPException(status_code=404, detail=str(errors.UnknownSubscriberError(subscriber_id)))

    return responses.StreamingResponse(
        notification_stream(service, subscriber_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
