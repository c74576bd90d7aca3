"""Tests for the subscriber notification stream."""

from __future__ import annotations

import json

import pytest

from trackingtracker.routes import events
from trackingtracker.service import TrackerService


class TestFormatSseEvent:
    def test_basic_event(self) -> None:
        result = events.format_sse_event("trackingNotification", {"tabId": 1, "domain": "t.com"})
        assert result.startswith("event: trackingNotification\n")
        assert result.endswith("\n\n")
        payload = json.loads(result.split("\n")[1][len("data: ") :])
        assert payload == {"tabId": 1, "domain": "t.com"}


class TestNotificationStream:
    """Tests for notification_stream()."""

    @pytest.mark.asyncio
    async def test_streams_notifications(self, service: TrackerService) -> None:
        service.register_subscriber("ext-1", "Badge")
        stream = events.notification_stream(service, "ext-1", keepalive=0.01)

        assert await anext(stream) == ": keepalive\n\n"
        service.subscribers.notify(3, "t.com")
        event = await anext(stream)
        assert event.startswith("event: trackingNotification\n")
        payload = json.loads(event.split("\n")[1][len("data: ") :])
        assert payload == {"type": "trackingNotification", "tabId": 3, "domain": "t.com"}

        await stream.aclose()
        service.subscribers.notify(3, "u.com")
        assert service.subscribers.listen("ext-1").empty()

    @pytest.mark.asyncio
    async def test_unknown_subscriber(self, service: TrackerService) -> None:
        stream = events.notification_stream(service, "nobody")
        with pytest.raises(KeyError):
            await anext(stream)
