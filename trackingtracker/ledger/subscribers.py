"""Registry of external subscribers and notification fan-out.

Subscribers register once (persisted under ``registered``) and may
then open a stream; every tracker appended to the ledger is pushed
to each open stream as a ``trackingNotification``.  In-process
listeners (e.g. a UI) can attach a plain callback instead.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TypeAlias

from trackingtracker.models import tracking
from trackingtracker.storage import blobs
from trackingtracker.utils import errors, logger

log = logger.create_logger("Subscribers")

BLOB_KEY = "registered"

Listener: TypeAlias = Callable[[tracking.TrackingNotification], None]


class SubscriberRegistry:
    """Registered subscribers, their open streams and local listeners."""

    def __init__(
        self,
        store: blobs.BlobStore | None = None,
        subscribers: dict[str, tracking.Subscriber] | None = None,
        queue_size: int = 256,
    ) -> None:
        self._store = store
        self._subscribers: dict[str, tracking.Subscriber] = dict(subscribers or {})
        self._queues: dict[str, asyncio.Queue[tracking.TrackingNotification]] = {}
        self._listeners: list[Listener] = []
        self._queue_size = queue_size

    @classmethod
    def load(cls, store: blobs.BlobStore, queue_size: int = 256) -> SubscriberRegistry:
        """Restore the registry persisted under ``registered``."""
        data = store.load(BLOB_KEY)
        subscribers: dict[str, tracking.Subscriber] = {}
        if isinstance(data, dict):
            for sub_id, entry in data.items():
                try:
                    subscribers[sub_id] = tracking.Subscriber.model_validate({**entry, "id": sub_id})
                except (TypeError, ValueError) as exc:
                    log.warn("Skipping malformed subscriber", {"id": sub_id, "error": errors.get_error_message(exc)})
        log.info("Subscribers loaded", {"count": len(subscribers)})
        return cls(store, subscribers, queue_size)

    def register(self, subscriber_id: str, name: str, link: str | None = None) -> tracking.Subscriber:
        subscriber = tracking.Subscriber(id=subscriber_id, name=name, link=link)
        self._subscribers[subscriber_id] = subscriber
        log.info("Subscriber registered", {"id": subscriber_id, "name": name})
        self._persist()
        return subscriber

    def unregister(self, subscriber_id: str) -> bool:
        """Forget a subscriber (uninstalled or disabled on the host)."""
        removed = self._subscribers.pop(subscriber_id, None)
        self._queues.pop(subscriber_id, None)
        if removed is None:
            return False
        log.info("Subscriber unregistered", {"id": subscriber_id})
        self._persist()
        return True

    def all(self) -> dict[str, tracking.Subscriber]:
        return dict(self._subscribers)

    def listen(self, subscriber_id: str) -> asyncio.Queue[tracking.TrackingNotification]:
        """Open (or reuse) the notification queue of a registered subscriber."""
        if subscriber_id not in self._subscribers:
            raise errors.UnknownSubscriberError(subscriber_id)
        queue = self._queues.get(subscriber_id)
        if queue is None:
            queue = asyncio.Queue(maxsize=self._queue_size)
            self._queues[subscriber_id] = queue
        return queue

    def stop_listening(self, subscriber_id: str) -> None:
        self._queues.pop(subscriber_id, None)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self, tab_id: int, domain: str) -> tracking.TrackingNotification:
        """Push a notification to every open stream and local listener."""
        notification = tracking.TrackingNotification(tab_id=tab_id, domain=domain)

        for sub_id, queue in self._queues.items():
            if queue.full():
                # Slow consumer: drop the oldest pending notification.
                queue.get_nowait()
                log.debug("Subscriber queue full, dropped oldest", {"id": sub_id})
            queue.put_nowait(notification)

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as exc:
                log.error("Listener failed", {"error": errors.get_error_message(exc)})
        return notification

    def _persist(self) -> None:
        if self._store is not None:
            payload = {
                sub_id: s.model_dump(exclude={"id"}, exclude_none=True)
                for sub_id, s in self._subscribers.items()
            }
            self._store.save(BLOB_KEY, payload)
