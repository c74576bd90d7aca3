"""Blocking policy and the synchronous request gate.

Three orthogonal controls, each persisted as its own blob:

- ``blocked``: tracker domains whose requests are cancelled,
- ``removecookies``: tracker domains whose requests lose their
  ``Cookie`` header,
- ``blockedcat``: categories whose trackers are blocked as soon
  as they are observed.

A domain may be both blocked and cookie-stripped; blocking wins.
Every domain argument may be a ledger key carrying a
``-referredby-`` suffix, which is stripped before lookup.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from trackingtracker.models import requests, tracking
from trackingtracker.models.tracking import Category
from trackingtracker.storage import blobs
from trackingtracker.utils import logger
from trackingtracker.utils.url import get_domain_from_url, strip_referred_by

log = logger.create_logger("Policy")

BLOCKED_KEY = "blocked"
STRIP_KEY = "removecookies"
CATEGORY_KEY = "blockedcat"

_CATEGORY_VALUES = frozenset(c.value for c in Category)


def _bool_map(data: object) -> dict[str, bool]:
    if not isinstance(data, dict):
        return {}
    return {str(k): bool(v) for k, v in data.items()}


class PolicyEnforcer:
    """Owns the ``BlockPolicy`` maps and applies them to requests."""

    def __init__(
        self,
        store: blobs.BlobStore | None = None,
        blocked_domains: dict[str, bool] | None = None,
        blocked_categories: dict[str, bool] | None = None,
        cookie_strip_domains: dict[str, bool] | None = None,
    ) -> None:
        self._store = store
        self._blocked = dict(blocked_domains or {})
        self._categories = dict(blocked_categories or {})
        self._strip = dict(cookie_strip_domains or {})

    @classmethod
    def load(cls, store: blobs.BlobStore) -> PolicyEnforcer:
        """Restore the three policy blobs."""
        enforcer = cls(
            store,
            _bool_map(store.load(BLOCKED_KEY)),
            {k: v for k, v in _bool_map(store.load(CATEGORY_KEY)).items() if k in _CATEGORY_VALUES},
            _bool_map(store.load(STRIP_KEY)),
        )
        log.info("Block policy loaded", {
            "blockedDomains": sum(enforcer._blocked.values()),
            "blockedCategories": sorted(k for k, v in enforcer._categories.items() if v),
            "cookieStripDomains": sum(enforcer._strip.values()),
        })
        return enforcer

    # ── Domains ─────────────────────────────────────────────────

    def block_domain(self, domain: str) -> None:
        self._blocked[strip_referred_by(domain)] = True
        self._persist(BLOCKED_KEY)

    def unblock_domain(self, domain: str) -> None:
        self._blocked[strip_referred_by(domain)] = False
        self._persist(BLOCKED_KEY)

    def strip_cookies_for(self, domain: str) -> None:
        self._strip[strip_referred_by(domain)] = True
        self._persist(STRIP_KEY)

    def stop_stripping_cookies_for(self, domain: str) -> None:
        self._strip[strip_referred_by(domain)] = False
        self._persist(STRIP_KEY)

    def is_blocked(self, domain: str) -> bool:
        return self._blocked.get(strip_referred_by(domain), False)

    def is_stripping(self, domain: str) -> bool:
        return self._strip.get(strip_referred_by(domain), False)

    # ── Categories ──────────────────────────────────────────────

    def is_category_blocked(self, category: Category) -> bool:
        return self._categories.get(category.value, False)

    def block_category(self, category: Category, records: Iterable[tracking.TrackerRecord]) -> list[str]:
        """Block every recorded domain of *category*, then the category itself.

        The flag makes trackers classified after the sweep blocked on
        record as well.

        Returns:
            The bare domains blocked by the sweep.
        """
        swept = sorted({r.domain for r in records if r.category is category})
        for domain in swept:
            self._blocked[domain] = True
        self._categories[category.value] = True
        log.info("Category blocked", {"category": category.value, "domains": len(swept)})
        self._persist(BLOCKED_KEY, CATEGORY_KEY)
        return swept

    def unblock_category(self, category: Category, records: Iterable[tracking.TrackerRecord]) -> list[str]:
        """Unblock the category and recompute its domains from the full category set.

        A domain recorded under *category* stays blocked when it was
        also recorded under another category that is still blocked.

        Returns:
            The bare domains unblocked by the sweep.
        """
        self._categories[category.value] = False

        seen: defaultdict[str, set[Category]] = defaultdict(set)
        for record in records:
            seen[record.domain].add(record.category)

        released: list[str] = []
        for domain, categories in sorted(seen.items()):
            if category not in categories:
                continue
            if any(self.is_category_blocked(c) for c in categories if c is not category):
                continue
            self._blocked[domain] = False
            released.append(domain)

        log.info("Category unblocked", {"category": category.value, "domains": len(released)})
        self._persist(BLOCKED_KEY, CATEGORY_KEY)
        return released

    # ── Views ───────────────────────────────────────────────────

    def blocked_domains(self) -> dict[str, bool]:
        return dict(self._blocked)

    def blocked_categories(self) -> dict[str, bool]:
        return dict(self._categories)

    def cookie_strip_domains(self) -> dict[str, bool]:
        return dict(self._strip)

    def clear(self) -> None:
        self._blocked.clear()
        self._categories.clear()
        self._strip.clear()
        self._persist(BLOCKED_KEY, STRIP_KEY, CATEGORY_KEY)

    # ── Gate ────────────────────────────────────────────────────

    def gate(self, request: requests.InterceptedRequest, tracking_suspected: bool) -> requests.GateVerdict:
        """Decide synchronously whether the request may leave as-is.

        Policy is only consulted when a detector flagged a possible
        tracking situation; everything else is allowed untouched.
        """
        if not tracking_suspected:
            return requests.GateVerdict()

        domain = get_domain_from_url(request.url)
        if self.is_blocked(domain):
            log.info("Cancelling request", {"url": request.url, "tabId": request.tab_id})
            return requests.GateVerdict(action=requests.GateAction.CANCEL)
        if self.is_stripping(domain):
            log.info("Removing cookies from request", {"url": request.url, "tabId": request.tab_id})
            return requests.GateVerdict(
                action=requests.GateAction.STRIP,
                headers=request.headers_without("Cookie"),
            )
        return requests.GateVerdict()

    def _persist(self, *keys: str) -> None:
        if self._store is None:
            return
        blobs_by_key = {BLOCKED_KEY: self._blocked, STRIP_KEY: self._strip, CATEGORY_KEY: self._categories}
        for key in keys:
            self._store.save(key, blobs_by_key[key])
