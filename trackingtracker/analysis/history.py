"""Local mirror of the user's browsing history, keyed by domain.

A tracker whose domain the user has organically visited is
classified as *personal* (category E).  That classification is
only valid while real history corroborates it, so removals from
the browser history evict domains from the index; the service
then downgrades the affected ledger records.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from trackingtracker.storage import blobs
from trackingtracker.utils import logger
from trackingtracker.utils.url import get_domain_from_url

log = logger.create_logger("History")

BLOB_KEY = "histmap"


class HistoryProvider(Protocol):
    """Bulk access to the remaining browser history."""

    async def search(self) -> list[str]:
        """Return the URL of every remaining history item."""
        ...


class HistoryOracle:
    """Answers "has the user personally visited this domain"."""

    def __init__(self, store: blobs.BlobStore | None = None, index: dict[str, bool] | None = None) -> None:
        self._store = store
        self._index: dict[str, bool] = dict(index or {})

    @classmethod
    def load(cls, store: blobs.BlobStore) -> HistoryOracle:
        """Restore the index persisted under ``histmap``."""
        data = store.load(BLOB_KEY)
        index = {str(k): True for k, v in data.items() if v} if isinstance(data, dict) else {}
        log.info("History index loaded", {"domains": len(index)})
        return cls(store, index)

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, domain: object) -> bool:
        return domain in self._index

    def is_known(self, domain: str) -> bool:
        return domain in self._index

    def domains(self) -> list[str]:
        return sorted(self._index)

    def record_visit(self, url: str) -> bool:
        """Add the visited URL's domain; returns True when it is new."""
        domain = get_domain_from_url(url)
        if not domain or domain in self._index:
            return False
        self._index[domain] = True
        self._persist()
        return True

    def remove_urls(self, urls: Iterable[str], remaining_urls: Iterable[str]) -> set[str]:
        """Evict domains of *urls* that no remaining history item maps to.

        Args:
            urls: URLs the user removed from history.
            remaining_urls: Snapshot of every history item left.

        Returns:
            The set of evicted domains (empty when nothing changed).
        """
        remaining = {get_domain_from_url(u) for u in remaining_urls}
        evicted: set[str] = set()
        for url in urls:
            domain = get_domain_from_url(url)
            if domain in remaining or domain in evicted:
                continue
            evicted.add(domain)
            self._index.pop(domain, None)

        if evicted:
            log.info("Evicted domains from history index", {"domains": sorted(evicted)})
            self._persist()
        return evicted

    def clear(self) -> None:
        self._index.clear()
        self._persist()

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(BLOB_KEY, self._index)


class VisitLog:
    """In-process history provider fed by top-level navigations."""

    def __init__(self) -> None:
        self._urls: list[str] = []

    def record(self, url: str) -> None:
        self._urls.append(url)

    def remove(self, urls: Iterable[str]) -> None:
        doomed = set(urls)
        self._urls = [u for u in self._urls if u not in doomed]

    def clear(self) -> None:
        self._urls.clear()

    async def search(self) -> list[str]:
        return list(self._urls)
