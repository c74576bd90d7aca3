"""
Coordinating tracker service.

Owns every piece of process-wide state (tab sessions, history
index, site ledger, block policy, subscribers), loads it at start,
and exposes both the host event handlers and the command/query
surface used by the HTTP routes and in-process callers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from trackingtracker.analysis import candidates as candidates_mod
from trackingtracker.analysis import classifier as classifier_mod
from trackingtracker.analysis import history as history_mod
from trackingtracker.browser import tabs
from trackingtracker.ledger import ledger as ledger_mod
from trackingtracker.ledger import policy as policy_mod
from trackingtracker.ledger import subscribers as subscribers_mod
from trackingtracker.models import requests, tracking
from trackingtracker.models.tracking import Category
from trackingtracker.storage import blobs
from trackingtracker.utils import errors, logger

log = logger.create_logger("TrackerService")


class TrackerService:
    """Single owner of tracker state with a load/flush/clear lifecycle."""

    def __init__(
        self,
        store: blobs.BlobStore,
        *,
        cookies: classifier_mod.CookieStore,
        windows: classifier_mod.WindowOracle,
        history_provider: history_mod.HistoryProvider | None = None,
        queue_size: int = 256,
    ) -> None:
        """Load persisted state and wire the components together.

        Args:
            store: Blob store holding the persisted state.
            cookies: Host cookie store used by the leak detector.
            windows: Host window oracle used for popup detection.
            history_provider: External bulk history access.  When
                omitted, visits reported to the service are kept in
                an in-process ``VisitLog`` which serves that role.
            queue_size: Notifications buffered per subscriber stream.
        """
        self.store = store
        self.sessions = tabs.SessionStore()
        self.history = history_mod.HistoryOracle.load(store)
        self.policy = policy_mod.PolicyEnforcer.load(store)
        self.subscribers = subscribers_mod.SubscriberRegistry.load(store, queue_size)
        self.ledger = ledger_mod.TrackerLedger.load(store, self.sessions, self.policy, self.subscribers)
        self.classifier = classifier_mod.ClassificationEngine(self.history, cookies, windows)

        self._visit_log = history_mod.VisitLog() if history_provider is None else None
        self._history_provider: history_mod.HistoryProvider = history_provider or self._visit_log
        self._tasks: set[asyncio.Task[None]] = set()

    # ==========================================================================
    # Request Gate
    # ==========================================================================

    def on_before_send_headers(self, request: requests.InterceptedRequest) -> requests.GateVerdict:
        """Decide synchronously what happens to an outgoing request.

        Classification proper is scheduled in the background; the
        verdict here only depends on the conservative detector flags
        and the block policy.  Any unexpected failure allows the
        request unmodified.
        """
        if request.tab_id < 0:
            return requests.GateVerdict()
        try:
            assessment = self.classifier.assess(request, self.sessions.get(request.tab_id))
            if assessment is None:
                return requests.GateVerdict()

            self._schedule_classification(assessment)

            verdict = self.policy.gate(request, assessment.tracking)
            if verdict.cancel:
                self.ledger.record_blocked(request.tab_id, assessment.request_domain)
            return verdict
        except Exception as exc:
            log.error("Gate failed, allowing request", {"url": request.url, "error": errors.get_error_message(exc)})
            return requests.GateVerdict()

    def _schedule_classification(self, assessment: classifier_mod.Assessment) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warn("No running event loop, classification skipped", {"url": assessment.request_url})
            return
        task = loop.create_task(self._classify(assessment))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _classify(self, assessment: classifier_mod.Assessment) -> None:
        try:
            decisions = await self.classifier.classify(assessment)
        except Exception as exc:
            log.error("Classification failed", {"url": assessment.request_url, "error": errors.get_error_message(exc)})
            return
        for decision in decisions:
            self.ledger.record(
                decision.site,
                decision.tracker_domain,
                decision.category,
                assessment.tab_id,
                decision.referrer,
                epoch=assessment.epoch,
            )

    async def drain(self) -> None:
        """Wait for in-flight classification and persistence to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.store.flush()

    # ==========================================================================
    # Host Events
    # ==========================================================================

    def on_tab_updated(self, tab_id: int, url: str, window_id: int | None = None, *, loading: bool = False) -> None:
        self.sessions.update(tab_id, url, window_id, loading=loading)

    def on_tab_activated(self, tab_id: int) -> None:
        self.sessions.activate(tab_id)

    def on_tab_removed(self, tab_id: int) -> None:
        self.sessions.remove(tab_id)

    def on_cookie_set(self, tab_id: int, report: requests.CookieSetReport) -> tracking.AnalyticsCandidate | None:
        """Record an analytics candidate when a third-party script set a cookie."""
        candidate = candidates_mod.parse_candidate(report.url, report.call_stack, report.cookie_string)
        if candidate is None:
            return None
        if not self.sessions.add_candidate(tab_id, candidate):
            return None
        log.debug("Analytics candidate", {"tabId": tab_id, "setter": candidate.setter_domain})
        return candidate

    def on_history_visited(self, url: str) -> None:
        if self._visit_log is not None:
            self._visit_log.record(url)
        self.history.record_visit(url)

    async def on_history_removed(self, urls: Iterable[str] = (), *, all_history: bool = False) -> set[str]:
        """Evict removed domains and downgrade their personal trackers.

        Returns:
            The domains evicted from the history index.
        """
        if all_history:
            if self._visit_log is not None:
                self._visit_log.clear()
            self.history.clear()
            self.ledger.clear_sites()
            log.info("All history removed, site ledger cleared")
            return set()

        urls = list(urls)
        if self._visit_log is not None:
            self._visit_log.remove(urls)
        try:
            remaining = await self._history_provider.search()
        except Exception as exc:
            log.warn("History search failed, eviction skipped", {"error": errors.get_error_message(exc)})
            return set()

        evicted = self.history.remove_urls(urls, remaining)
        for domain in sorted(evicted):
            self.ledger.downgrade_personal(domain)
            self.ledger.forget_site(domain)
        return evicted

    # ==========================================================================
    # Queries
    # ==========================================================================

    def get_trackers(self) -> dict[str, tracking.TrackerSummary]:
        return self.ledger.trackers()

    def get_trackers_on_current_tab(self) -> dict[str, list[str]]:
        return self.ledger.trackers_on_tab(self.sessions.active())

    def get_trackers_by_site(self) -> dict[str, dict[str, list[str]]]:
        return self.ledger.trackers_by_site()

    def is_tracker_domain_blocked(self, domain: str) -> bool:
        return self.policy.is_blocked(domain)

    def get_blocked_domains(self) -> dict[str, bool]:
        return self.policy.blocked_domains()

    def get_blocked_categories(self) -> dict[str, bool]:
        return self.policy.blocked_categories()

    def get_remove_cookie_domains(self) -> dict[str, bool]:
        return self.policy.cookie_strip_domains()

    def get_registered_subscribers(self) -> dict[str, tracking.Subscriber]:
        return self.subscribers.all()

    # ==========================================================================
    # Commands
    # ==========================================================================

    def block_tracker_domain(self, domain: str) -> None:
        self.policy.block_domain(domain)

    def unblock_tracker_domain(self, domain: str) -> None:
        self.policy.unblock_domain(domain)

    def remove_cookies_for_tracker_domain(self, domain: str) -> None:
        self.policy.strip_cookies_for(domain)

    def stop_remove_cookies_for_tracker_domain(self, domain: str) -> None:
        self.policy.stop_stripping_cookies_for(domain)

    def block_category(self, category: str | Category) -> list[str]:
        category = tracking.parse_category(category)
        return self.policy.block_category(category, self.ledger.iter_records())

    def unblock_category(self, category: str | Category) -> list[str]:
        category = tracking.parse_category(category)
        return self.policy.unblock_category(category, self.ledger.iter_records())

    def register_subscriber(self, subscriber_id: str, name: str, link: str | None = None) -> tracking.Subscriber:
        return self.subscribers.register(subscriber_id, name, link)

    def unregister_subscriber(self, subscriber_id: str) -> bool:
        return self.subscribers.unregister(subscriber_id)

    def clear_all_data(self) -> None:
        """Forget trackers, history and policy; subscribers are kept."""
        self.ledger.clear()
        self.history.clear()
        if self._visit_log is not None:
            self._visit_log.clear()
        self.policy.clear()
        log.success("All tracker data cleared")
