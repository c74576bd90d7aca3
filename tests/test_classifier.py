"""Tests for the classification engine.

Covers cookie rule precedence, the identifying-value filter, the
synchronous assessment and the asynchronous cookie and leak
detectors against fake host collaborators.
"""

from __future__ import annotations

import pytest

from trackingtracker.analysis import classifier, history
from trackingtracker.browser import tabs
from trackingtracker.models import requests, tracking
from trackingtracker.models.tracking import Category


def _request(url: str, tab_id: int = 1, **headers: str) -> requests.InterceptedRequest:
    return requests.InterceptedRequest(url=url, tab_id=tab_id, headers=headers)


def _session(url: str, tab_id: int = 1, window_id: int = 1) -> tabs.TabSession:
    return tabs.TabSession(tab_id=tab_id, url=url, window_id=window_id)


@pytest.fixture()
def oracle() -> history.HistoryOracle:
    return history.HistoryOracle()


@pytest.fixture()
def engine(oracle, cookie_store, windows) -> classifier.ClassificationEngine:
    return classifier.ClassificationEngine(oracle, cookie_store, windows)


# ── Cookie rules ────────────────────────────────────────────────


class TestMatchCookieRule:
    """Tests for match_cookie_rule() precedence."""

    def _facts(self, **overrides: object) -> classifier.CookieFacts:
        base = {"origin_domain": "a.com", "request_domain": "t.com", "has_referrer": False, "history_known": False}
        base.update(overrides)
        return classifier.CookieFacts(**base)  # type: ignore[arg-type]

    def test_same_domain_is_not_a_tracker(self) -> None:
        rule = classifier.match_cookie_rule(self._facts(request_domain="a.com", history_known=True))
        assert rule.outcome is classifier.CookieOutcome.NO_TRACKER

    def test_personal_beats_referrer(self) -> None:
        rule = classifier.match_cookie_rule(self._facts(history_known=True, has_referrer=True))
        assert rule.outcome is classifier.CookieOutcome.PERSONAL

    def test_referrer_checks_popup(self) -> None:
        rule = classifier.match_cookie_rule(self._facts(has_referrer=True))
        assert rule.outcome is classifier.CookieOutcome.CHECK_POPUP

    def test_vanilla_fallback(self) -> None:
        assert classifier.match_cookie_rule(self._facts()).outcome is classifier.CookieOutcome.VANILLA

    def test_last_rule_is_catch_all(self) -> None:
        assert classifier.COOKIE_RULES[-1].applies(self._facts())


class TestIsIdentifyingValue:
    """Tests for is_identifying_value()."""

    @pytest.mark.parametrize("value", ["www", "true", "false", "ID", "en_US", "en_us", "undefined", "abc", ""])
    def test_trivial(self, value: str) -> None:
        assert not classifier.is_identifying_value(value)

    @pytest.mark.parametrize("value", ["XYZ123", "abcd", "GA1.2.3456"])
    def test_identifying(self, value: str) -> None:
        assert classifier.is_identifying_value(value)


# ── Assessment ──────────────────────────────────────────────────


class TestAssess:
    """Tests for ClassificationEngine.assess()."""

    def test_no_session(self, engine: classifier.ClassificationEngine) -> None:
        assert engine.assess(_request("https://t.com/"), None) is None

    @pytest.mark.parametrize("url", ["chrome://newtab", "about:blank", ""])
    def test_unattributable_tab(self, engine: classifier.ClassificationEngine, url: str) -> None:
        assert engine.assess(_request("https://t.com/"), _session(url)) is None

    def test_cross_domain_cookie_request(self, engine: classifier.ClassificationEngine) -> None:
        a = engine.assess(_request("https://px.t.com/p.gif", Cookie="uid=1"), _session("https://www.a.com/"))
        assert a is not None
        assert a.origin_domain == "a.com"
        assert a.request_domain == "t.com"
        assert a.cookie_tracking
        assert a.tracking

    def test_same_domain_not_tracking(self, engine: classifier.ClassificationEngine) -> None:
        a = engine.assess(_request("https://cdn.a.com/x.js", Cookie="uid=1"), _session("https://a.com/"))
        assert a is not None
        assert not a.tracking

    def test_leak_domain_prefers_referrer(self, engine: classifier.ClassificationEngine) -> None:
        a = engine.assess(_request("https://t.com/", Referer="http://ad.net/x"), _session("https://a.com/"))
        assert a.referrer_domain == "ad.net"
        assert a.leak_domain == "ad.net"

    def test_candidates_snapshotted(self, engine: classifier.ClassificationEngine) -> None:
        session = _session("https://a.com/")
        session.candidates.append(tracking.AnalyticsCandidate(setter_domain="t.com", cookie_value="id=XYZ123"))
        a = engine.assess(_request("https://t.com/"), session)
        session.candidates.clear()
        assert len(a.candidates) == 1


# ── Cookie-bearing detector ─────────────────────────────────────


class TestClassifyCookieRequests:
    """Cookie-bearing requests produce B, C or E."""

    @pytest.mark.asyncio
    async def test_vanilla(self, engine: classifier.ClassificationEngine) -> None:
        a = engine.assess(_request("https://t.com/", Cookie="uid=1"), _session("https://a.com/"))
        assert await engine.classify(a) == [classifier.Decision("a.com", "t.com", Category.VANILLA)]

    @pytest.mark.asyncio
    async def test_personal_even_with_referrer(self, engine, oracle) -> None:
        oracle.record_visit("https://t.com/")
        a = engine.assess(
            _request("https://t.com/", Cookie="uid=1", Referer="https://a.com/"), _session("https://a.com/")
        )
        assert await engine.classify(a) == [classifier.Decision("a.com", "t.com", Category.PERSONAL)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("referer", "popup"),
        [(None, True), ("https://a.com/", True), ("https://a.com/", False), (None, False)],
    )
    async def test_personal_regardless_of_referrer_and_popup(
        self, engine, oracle, windows, referer: str | None, popup: bool
    ) -> None:
        oracle.record_visit("https://t.com/")
        if popup:
            windows.popups.add(5)
        headers = {"Cookie": "uid=1"}
        if referer is not None:
            headers["Referer"] = referer
        a = engine.assess(_request("https://t.com/", **headers), _session("https://a.com/", window_id=5))
        assert await engine.classify(a) == [classifier.Decision("a.com", "t.com", Category.PERSONAL)]

    @pytest.mark.asyncio
    async def test_referred_in_popup_is_forced(self, engine, windows) -> None:
        windows.popups.add(5)
        a = engine.assess(
            _request("https://t.com/", Cookie="uid=1", Referer="https://a.com/"),
            _session("https://a.com/", window_id=5),
        )
        assert await engine.classify(a) == [classifier.Decision("a.com", "t.com", Category.FORCED)]

    @pytest.mark.asyncio
    async def test_referred_in_normal_window_is_vanilla(self, engine) -> None:
        a = engine.assess(
            _request("https://t.com/", Cookie="uid=1", Referer="https://a.com/"), _session("https://a.com/")
        )
        assert await engine.classify(a) == [classifier.Decision("a.com", "t.com", Category.VANILLA)]

    @pytest.mark.asyncio
    async def test_window_lookup_failure_yields_nothing(self, engine, windows) -> None:
        windows.fail = True
        a = engine.assess(
            _request("https://t.com/", Cookie="uid=1", Referer="https://a.com/"), _session("https://a.com/")
        )
        assert await engine.classify(a) == []

    @pytest.mark.asyncio
    async def test_no_cookie_header_no_cookie_decision(self, engine) -> None:
        a = engine.assess(_request("https://t.com/"), _session("https://a.com/"))
        assert await engine.classify(a) == []


# ── Leak detector ───────────────────────────────────────────────


class TestClassifyLeaks:
    """Identifier leaks produce A, D or F."""

    @pytest.mark.asyncio
    async def test_analytics(self, engine, cookie_store) -> None:
        session = _session("https://a.com/")
        session.candidates.append(tracking.AnalyticsCandidate(setter_domain="t.com", cookie_value="id=XYZ123"))
        cookie_store.add("a.com", "id", "XYZ123")

        a = engine.assess(_request("https://t.com/collect?cid=XYZ123"), session)
        assert await engine.classify(a) == [classifier.Decision("a.com", "t.com", Category.ANALYTICS)]

    @pytest.mark.asyncio
    async def test_referred_analytics(self, engine, cookie_store) -> None:
        session = _session("https://a.com/")
        session.candidates.append(tracking.AnalyticsCandidate(setter_domain="s.com", cookie_value="id=XYZ123"))
        cookie_store.add("a.com", "id", "XYZ123")

        a = engine.assess(_request("https://t.com/sync?u=XYZ123"), session)
        assert await engine.classify(a) == [
            classifier.Decision("a.com", "t.com", Category.REFERRED_ANALYTICS, "s.com")
        ]

    @pytest.mark.asyncio
    async def test_referred(self, engine, cookie_store) -> None:
        cookie_store.add("ad.net", "uid", "AD7788")
        a = engine.assess(
            _request("https://tracker.com/match?partner=AD7788", Referer="http://ad.net/"),
            _session("https://site.com/"),
        )
        assert await engine.classify(a) == [
            classifier.Decision("site.com", "tracker.com", Category.REFERRED, "ad.net")
        ]

    @pytest.mark.asyncio
    async def test_self_referral_ignored(self, engine, cookie_store) -> None:
        cookie_store.add("ad.net", "uid", "AD7788")
        a = engine.assess(
            _request("https://px.ad.net/p?u=AD7788", Referer="http://ad.net/"), _session("https://site.com/")
        )
        assert await engine.classify(a) == []

    @pytest.mark.asyncio
    async def test_plain_leak_without_candidate(self, engine, cookie_store) -> None:
        cookie_store.add("a.com", "id", "XYZ123")
        a = engine.assess(_request("https://t.com/?x=XYZ123"), _session("https://a.com/"))
        assert await engine.classify(a) == []

    @pytest.mark.asyncio
    async def test_candidate_name_does_not_match(self, engine, cookie_store) -> None:
        session = _session("https://a.com/")
        session.candidates.append(tracking.AnalyticsCandidate(setter_domain="t.com", cookie_value="visitor=42ab"))
        cookie_store.add("a.com", "v", "visitor")
        a = engine.assess(_request("https://t.com/?who=visitor"), session)
        assert await engine.classify(a) == []

    @pytest.mark.asyncio
    async def test_trivial_value_not_a_leak(self, engine, cookie_store) -> None:
        session = _session("https://a.com/")
        session.candidates.append(tracking.AnalyticsCandidate(setter_domain="t.com", cookie_value="lang=en_US"))
        cookie_store.add("a.com", "lang", "en_US")
        a = engine.assess(_request("https://t.com/?l=en_US"), session)
        assert await engine.classify(a) == []

    @pytest.mark.asyncio
    async def test_cookie_enumeration_failure(self, engine, cookie_store) -> None:
        cookie_store.fail = True
        session = _session("https://a.com/")
        session.candidates.append(tracking.AnalyticsCandidate(setter_domain="t.com", cookie_value="id=XYZ123"))
        a = engine.assess(_request("https://t.com/?c=XYZ123"), session)
        assert await engine.classify(a) == []

    @pytest.mark.asyncio
    async def test_both_detectors_contribute(self, engine, cookie_store) -> None:
        session = _session("https://a.com/")
        session.candidates.append(tracking.AnalyticsCandidate(setter_domain="t.com", cookie_value="id=XYZ123"))
        cookie_store.add("a.com", "id", "XYZ123")
        a = engine.assess(_request("https://t.com/c?id=XYZ123", Cookie="tuid=42"), session)
        decisions = await engine.classify(a)
        assert {d.category for d in decisions} == {Category.VANILLA, Category.ANALYTICS}
