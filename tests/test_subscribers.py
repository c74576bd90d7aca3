"""Tests for the subscriber registry and notification fan-out."""

from __future__ import annotations

import pytest

from trackingtracker.ledger import subscribers
from trackingtracker.models import tracking
from trackingtracker.storage import blobs
from trackingtracker.utils import errors


class TestRegistration:
    """Register, unregister and persistence."""

    def test_register_and_list(self) -> None:
        registry = subscribers.SubscriberRegistry()
        sub = registry.register("ext-1", "Privacy Badge", "https://example.org")
        assert registry.all() == {"ext-1": sub}

    def test_unregister(self) -> None:
        registry = subscribers.SubscriberRegistry()
        registry.register("ext-1", "Badge")
        assert registry.unregister("ext-1")
        assert not registry.unregister("ext-1")
        assert registry.all() == {}

    def test_persists_under_registered(self, store: blobs.BlobStore) -> None:
        registry = subscribers.SubscriberRegistry.load(store)
        registry.register("ext-1", "Badge", "https://example.org")
        registry.register("ext-2", "Other")
        assert store.load("registered") == {
            "ext-1": {"name": "Badge", "link": "https://example.org"},
            "ext-2": {"name": "Other"},
        }
        restored = subscribers.SubscriberRegistry.load(store)
        assert restored.all()["ext-1"].link == "https://example.org"

    def test_load_skips_malformed(self, store: blobs.BlobStore) -> None:
        store.save("registered", {"good": {"name": "Ok"}, "bad": {"link": 5}})
        assert list(subscribers.SubscriberRegistry.load(store).all()) == ["good"]


class TestNotify:
    """Fan-out to streams and local listeners."""

    def test_listen_requires_registration(self) -> None:
        with pytest.raises(errors.UnknownSubscriberError):
            subscribers.SubscriberRegistry().listen("nobody")

    @pytest.mark.asyncio
    async def test_notify_reaches_open_stream(self) -> None:
        registry = subscribers.SubscriberRegistry()
        registry.register("ext-1", "Badge")
        queue = registry.listen("ext-1")
        registry.notify(4, "t.com")
        notification = await queue.get()
        assert notification == tracking.TrackingNotification(tab_id=4, domain="t.com")

    def test_full_queue_drops_oldest(self) -> None:
        registry = subscribers.SubscriberRegistry(queue_size=2)
        registry.register("ext-1", "Badge")
        queue = registry.listen("ext-1")
        for domain in ("a.com", "b.com", "c.com"):
            registry.notify(1, domain)
        assert [queue.get_nowait().domain for _ in range(queue.qsize())] == ["b.com", "c.com"]

    def test_stop_listening(self) -> None:
        registry = subscribers.SubscriberRegistry()
        registry.register("ext-1", "Badge")
        queue = registry.listen("ext-1")
        registry.stop_listening("ext-1")
        registry.notify(1, "t.com")
        assert queue.empty()

    def test_listener_errors_do_not_propagate(self) -> None:
        registry = subscribers.SubscriberRegistry()
        seen: list[str] = []

        def broken(_n: tracking.TrackingNotification) -> None:
            raise RuntimeError("boom")

        registry.add_listener(broken)
        registry.add_listener(lambda n: seen.append(n.domain))
        registry.notify(1, "t.com")
        assert seen == ["t.com"]

    def test_remove_listener(self) -> None:
        registry = subscribers.SubscriberRegistry()
        seen: list[str] = []

        def listener(n: tracking.TrackingNotification) -> None:
            seen.append(n.domain)

        registry.add_listener(listener)
        registry.remove_listener(listener)
        registry.notify(1, "t.com")
        assert seen == []
