"""The tracker ledger.

Stores every tracker observation per originating site (append-only,
duplicates allowed) and per tab (reset on navigation).  Dedup and
sorting happen in the aggregate views, never at storage time.

Recording a tracker also applies category-wide blocking, persists
the site ledger and notifies subscribers.
"""

from __future__ import annotations

from collections.abc import Iterator

from trackingtracker.browser import tabs
from trackingtracker.ledger import policy as policy_mod
from trackingtracker.ledger import subscribers as subscribers_mod
from trackingtracker.models import tracking
from trackingtracker.models.tracking import Category
from trackingtracker.storage import blobs
from trackingtracker.utils import errors, logger
from trackingtracker.utils.url import strip_referred_by

log = logger.create_logger("Ledger")

BLOB_KEY = "sites"


def _load_sites(data: object) -> dict[str, list[tracking.TrackerRecord]]:
    """Parse the persisted ``sites`` blob, skipping malformed records.

    Records persisted with a compound ``-referredby-`` domain are
    split back into domain and referrer.
    """
    sites: dict[str, list[tracking.TrackerRecord]] = {}
    if not isinstance(data, dict):
        return sites
    for site, entries in data.items():
        records: list[tracking.TrackerRecord] = []
        for entry in entries if isinstance(entries, list) else []:
            try:
                if isinstance(entry, dict) and not entry.get("referrer"):
                    entry = {k: v for k, v in entry.items() if k != "referrer"}
                record = tracking.TrackerRecord.model_validate(entry)
            except (TypeError, ValueError) as exc:
                log.warn("Skipping malformed tracker record", {"site": site, "error": errors.get_error_message(exc)})
                continue
            if record.referrer is not None:
                record = record.model_copy(update={"domain": strip_referred_by(record.domain)})
            records.append(record)
        sites[str(site)] = records
    return sites


class TrackerLedger:
    """Site- and tab-keyed record of observed trackers."""

    def __init__(
        self,
        sessions: tabs.SessionStore,
        policy: policy_mod.PolicyEnforcer,
        subscribers: subscribers_mod.SubscriberRegistry,
        store: blobs.BlobStore | None = None,
        sites: dict[str, list[tracking.TrackerRecord]] | None = None,
    ) -> None:
        self._sessions = sessions
        self._policy = policy
        self._subscribers = subscribers
        self._store = store
        self._sites: dict[str, list[tracking.TrackerRecord]] = sites or {}

    @classmethod
    def load(
        cls,
        store: blobs.BlobStore,
        sessions: tabs.SessionStore,
        policy: policy_mod.PolicyEnforcer,
        subscribers: subscribers_mod.SubscriberRegistry,
    ) -> TrackerLedger:
        """Restore the site ledger persisted under ``sites``."""
        sites = _load_sites(store.load(BLOB_KEY))
        log.info("Site ledger loaded", {"sites": len(sites), "records": sum(len(v) for v in sites.values())})
        return cls(sessions, policy, subscribers, store, sites)

    # ── Recording ───────────────────────────────────────────────

    def record(
        self,
        site_domain: str,
        tracker_domain: str,
        category: Category,
        tab_id: int,
        referrer_domain: str | None = None,
        *,
        epoch: int | None = None,
    ) -> tracking.TrackerRecord | None:
        """Append one tracker observation.

        Args:
            site_domain: Domain of the page the user is visiting.
            tracker_domain: Bare domain receiving the tracking data.
            category: The behavioural category decided for it.
            tab_id: Tab the request came from.
            referrer_domain: Attributed referrer, required for D and F.
            epoch: Tab load epoch captured at decision time.  When the
                tab has navigated since, the record still goes into the
                site ledger but not into the tab's list.

        Returns:
            The stored record, or ``None`` for a self-referencing
            observation (a site cannot track itself).
        """
        tracker_domain = strip_referred_by(tracker_domain)
        if site_domain == tracker_domain:
            log.debug("Ignoring first-party observation", {"site": site_domain, "category": category.value})
            return None

        record = tracking.TrackerRecord(
            domain=tracker_domain,
            category=category,
            referrer=referrer_domain if category in tracking.REFERRED_CATEGORIES else None,
        )

        if self._policy.is_category_blocked(category):
            self._policy.block_domain(tracker_domain)

        self._sites.setdefault(site_domain, []).append(record)

        session = self._sessions.get(tab_id)
        if session is not None and (epoch is None or epoch == session.epoch):
            session.trackers.append(record)

        log.debug("Tracker recorded", {
            "site": site_domain,
            "tracker": record.key,
            "category": category.value,
            "tabId": tab_id,
        })
        self._persist()
        self._subscribers.notify(tab_id, tracker_domain)
        return record

    def record_blocked(self, tab_id: int, domain: str) -> None:
        """Mark on the tab that a request to *domain* was cancelled."""
        session = self._sessions.get(tab_id)
        if session is not None:
            session.blocked.append(strip_referred_by(domain))

    # ── Maintenance ─────────────────────────────────────────────

    def downgrade_personal(self, domain: str) -> int:
        """Re-label every E record of *domain* as B in the site and tab lists.

        Returns:
            The number of site ledger records downgraded.
        """
        downgraded = 0
        for records in self._sites.values():
            downgraded += _downgrade(records, domain)
        for session in self._sessions:
            _downgrade(session.trackers, domain)
        if downgraded:
            log.info("Downgraded personal trackers", {"domain": domain, "records": downgraded})
            self._persist()
        return downgraded

    def forget_site(self, site_domain: str) -> bool:
        """Drop everything recorded while visiting *site_domain*."""
        if self._sites.pop(site_domain, None) is None:
            return False
        self._persist()
        return True

    def clear_sites(self) -> None:
        """Drop the site ledger only; open tabs keep their state."""
        self._sites.clear()
        self._persist()

    def clear(self) -> None:
        """Drop the site ledger and every tab's per-load state."""
        self._sites.clear()
        self._sessions.clear()
        self._persist()

    def iter_records(self) -> Iterator[tracking.TrackerRecord]:
        for records in list(self._sites.values()):
            yield from list(records)

    def raw(self) -> dict[str, list[tracking.TrackerRecord]]:
        """Copy of the raw site ledger (duplicates included)."""
        return {site: list(records) for site, records in self._sites.items()}

    # ── Aggregate views ─────────────────────────────────────────

    def trackers_on_tab(self, session: tabs.TabSession | None) -> dict[str, list[str]]:
        """Domain key -> sorted categories seen on the tab since it last loaded.

        Domains whose requests were only ever cancelled appear with an
        empty category list.
        """
        if session is None:
            return {}
        view = _group_categories(session.trackers)
        for domain in session.blocked:
            view.setdefault(domain, [])
        return view

    def trackers_by_site(self) -> dict[str, dict[str, list[str]]]:
        """Site -> tracker domain key -> sorted categories."""
        return {site: _group_categories(records) for site, records in self._sites.items()}

    def trackers(self) -> dict[str, tracking.TrackerSummary]:
        """Tracker domain key -> categories and the sites it was seen on."""
        categories: dict[str, set[Category]] = {}
        sites: dict[str, set[str]] = {}
        for site, records in self._sites.items():
            for record in records:
                categories.setdefault(record.key, set()).add(record.category)
                sites.setdefault(record.key, set()).add(site)
        return {
            key: tracking.TrackerSummary(
                domain=key,
                category_list=sorted(categories[key]),
                tracked_sites=sorted(sites[key]),
            )
            for key in categories
        }

    def _persist(self) -> None:
        if self._store is not None:
            payload = {
                site: [r.model_dump(mode="json", exclude_none=True) for r in records]
                for site, records in self._sites.items()
            }
            self._store.save(BLOB_KEY, payload)


def _downgrade(records: list[tracking.TrackerRecord], domain: str) -> int:
    count = 0
    for i, record in enumerate(records):
        if record.domain == domain and record.category is Category.PERSONAL:
            records[i] = record.model_copy(update={"category": Category.VANILLA})
            count += 1
    return count

def _group_categories(records: list[tracking.TrackerRecord]) -> dict[str, list[str]]:
    grouped: dict[str, set[str]] = {}
    for record in records:
        grouped.setdefault(record.key, set()).add(record.category.value)
    return {key: sorted(cats) for key, cats in grouped.items()}
