"""Tracker classification engine.

Classification is split in two paths:

- ``assess`` runs inside the request gate.  It is synchronous and
  reads only state that is durable at decision time (the tab
  session, the history index, the candidate list) to produce the
  conservative "is this a tracking situation" verdict.
- ``classify`` runs afterwards as a background task.  It performs
  the host lookups (window type, cookie enumeration) and returns
  the category decisions to append to the ledger.  It never
  revises the gate's verdict.

Cookie-bearing requests are categorised by ``COOKIE_RULES``, an
ordered rule list where the first matching rule wins.  Leaked
identifiers are categorised by ``_leak_decisions``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
from collections.abc import Callable
from typing import NamedTuple, Protocol

from trackingtracker.analysis import history as history_mod
from trackingtracker.browser import tabs
from trackingtracker.models import requests, tracking
from trackingtracker.models.tracking import Category
from trackingtracker.utils import errors, logger
from trackingtracker.utils.url import get_domain_from_url, has_attributable_domain

log = logger.create_logger("Classifier")


# ── Host collaborators ──────────────────────────────────────────


class CookieStore(Protocol):
    """Enumerates cookies scoped to a domain."""

    async def get_all(self, domain: str) -> list[requests.HostCookie]: ...


class WindowOracle(Protocol):
    """Resolves the type of the window a tab lives in."""

    async def get_window_type(self, window_id: int | None) -> requests.WindowType: ...


# ── Cookie rules ────────────────────────────────────────────────


class CookieOutcome(enum.Enum):
    NO_TRACKER = "none"
    PERSONAL = "personal"
    CHECK_POPUP = "check-popup"
    VANILLA = "vanilla"


class CookieFacts(NamedTuple):
    origin_domain: str
    request_domain: str
    has_referrer: bool
    history_known: bool


class CookieRule(NamedTuple):
    name: str
    applies: Callable[[CookieFacts], bool]
    outcome: CookieOutcome


# Order is precedence.  Personal beats the referrer/popup checks.
COOKIE_RULES: tuple[CookieRule, ...] = (
    CookieRule("same-domain", lambda f: f.origin_domain == f.request_domain, CookieOutcome.NO_TRACKER),
    CookieRule("personal", lambda f: f.history_known, CookieOutcome.PERSONAL),
    CookieRule("referred", lambda f: f.has_referrer, CookieOutcome.CHECK_POPUP),
    CookieRule("vanilla", lambda f: True, CookieOutcome.VANILLA),
)


def match_cookie_rule(facts: CookieFacts) -> CookieRule:
    """Return the first rule in ``COOKIE_RULES`` that applies."""
    for rule in COOKIE_RULES:
        if rule.applies(facts):
            return rule
    raise AssertionError("COOKIE_RULES must end with a catch-all rule")


# ── Leak filtering ──────────────────────────────────────────────

# Cookie values so common that finding them in a URL means nothing.
TRIVIAL_COOKIE_VALUES = frozenset([
    "www", "true", "false", "id", "ID", "us", "US",
    "en_US", "en_us", "all", "undefined",
])

_MIN_IDENTIFIER_LENGTH = 4


def is_identifying_value(value: str) -> bool:
    """True when a cookie value is distinctive enough to count as a leak."""
    return len(value) >= _MIN_IDENTIFIER_LENGTH and value not in TRIVIAL_COOKIE_VALUES


# ── Decisions ───────────────────────────────────────────────────


@dataclasses.dataclass(frozen=True)
class Decision:
    """A category decision ready to be appended to the ledger."""

    site: str
    tracker_domain: str
    category: Category
    referrer: str | None = None


@dataclasses.dataclass(frozen=True)
class Assessment:
    """Everything the gate and the background classification need.

    Captured synchronously when the request is intercepted so later
    tab navigations cannot change what this request is judged on.
    """

    tab_id: int
    epoch: int
    window_id: int | None
    request_url: str
    origin_domain: str
    request_domain: str
    referrer_domain: str | None
    leak_domain: str
    cookie_rule: CookieRule | None
    candidates: tuple[tracking.AnalyticsCandidate, ...] = ()

    @property
    def cross_domain(self) -> bool:
        return self.origin_domain != self.request_domain

    @property
    def cookie_tracking(self) -> bool:
        """Conservative verdict of the cookie-bearing detector."""
        return self.cookie_rule is not None and self.cross_domain

    @property
    def leak_tracking(self) -> bool:
        """Conservative verdict of the leak detector."""
        return self.cross_domain

    @property
    def tracking(self) -> bool:
        return self.cookie_tracking or self.leak_tracking


class ClassificationEngine:
    """Turns intercepted requests into tracker category decisions."""

    def __init__(
        self,
        history: history_mod.HistoryOracle,
        cookies: CookieStore,
        windows: WindowOracle,
    ) -> None:
        self._history = history
        self._cookies = cookies
        self._windows = windows

    def assess(
        self,
        request: requests.InterceptedRequest,
        session: tabs.TabSession | None,
    ) -> Assessment | None:
        """Synchronous part of classification.

        Returns ``None`` when the request cannot be attributed to a
        site (no tab, or an internal/privileged page), which the
        gate treats as "no tracker".
        """
        if session is None or not has_attributable_domain(session.url):
            return None

        origin_domain = get_domain_from_url(session.url)
        request_domain = get_domain_from_url(request.url)
        referer = request.header("Referer")
        referrer_domain = get_domain_from_url(referer) if referer else None

        cookie_rule = None
        if request.header("Cookie") is not None:
            cookie_rule = match_cookie_rule(
                CookieFacts(
                    origin_domain=origin_domain,
                    request_domain=request_domain,
                    has_referrer=referrer_domain is not None,
                    history_known=self._history.is_known(request_domain),
                )
            )

        return Assessment(
            tab_id=session.tab_id,
            epoch=session.epoch,
            window_id=session.window_id,
            request_url=request.url,
            origin_domain=origin_domain,
            request_domain=request_domain,
            referrer_domain=referrer_domain,
            leak_domain=referrer_domain or origin_domain,
            cookie_rule=cookie_rule,
            candidates=tuple(session.candidates),
        )

    async def classify(self, assessment: Assessment) -> list[Decision]:
        """Asynchronous part of classification; both detectors run."""
        cookie_decisions, leak_decisions = await asyncio.gather(
            self._classify_cookie_request(assessment),
            self._classify_leak_request(assessment),
        )
        return [*cookie_decisions, *leak_decisions]

    # ── Cookie-bearing detector ─────────────────────────────────

    async def _classify_cookie_request(self, a: Assessment) -> list[Decision]:
        if a.cookie_rule is None:
            return []

        outcome = a.cookie_rule.outcome
        if outcome is CookieOutcome.NO_TRACKER:
            return []
        if outcome is CookieOutcome.PERSONAL:
            category = Category.PERSONAL
        elif outcome is CookieOutcome.VANILLA:
            category = Category.VANILLA
        else:
            try:
                window_type = await self._windows.get_window_type(a.window_id)
            except Exception as exc:
                log.warn("Window lookup failed", {"tabId": a.tab_id, "error": errors.get_error_message(exc)})
                return []
            category = Category.FORCED if window_type == "popup" else Category.VANILLA

        log.debug("Cookie tracker", {
            "rule": a.cookie_rule.name,
            "category": category.value,
            "site": a.origin_domain,
            "tracker": a.request_domain,
        })
        return [Decision(a.origin_domain, a.request_domain, category)]

    # ── Leak detector ───────────────────────────────────────────

    async def _classify_leak_request(self, a: Assessment) -> list[Decision]:
        try:
            cookies = await self._cookies.get_all(a.leak_domain)
        except Exception as exc:
            log.warn("Cookie enumeration failed", {"domain": a.leak_domain, "error": errors.get_error_message(exc)})
            return []

        decisions: list[Decision] = []
        for cookie in cookies:
            value = cookie.value
            if not is_identifying_value(value) or value not in a.request_url:
                continue
            decisions.extend(_leak_decisions(a, value))
        return decisions


def _leak_decisions(a: Assessment, value: str) -> list[Decision]:
    """Categorise one leaked cookie value found in the request URL."""
    if a.referrer_domain is not None and a.leak_domain != a.origin_domain:
        if a.leak_domain == a.request_domain:
            # Tracker referring to itself.
            return []
        return [Decision(a.origin_domain, a.request_domain, Category.REFERRED, a.referrer_domain)]

    if not a.cross_domain:
        return []

    decisions: list[Decision] = []
    for candidate in a.candidates:
        if value not in candidate.value:
            continue
        if candidate.setter_domain == a.request_domain:
            decisions.append(Decision(a.origin_domain, a.request_domain, Category.ANALYTICS))
        else:
            decisions.append(
                Decision(a.origin_domain, a.request_domain, Category.REFERRED_ANALYTICS, candidate.setter_domain)
            )

    if not decisions:
        log.debug("Plain first-party cookie leak", {"site": a.origin_domain, "to": a.request_domain})
    return decisions
