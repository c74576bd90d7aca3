"""
Playwright browser host.

Binds a Playwright ``BrowserContext`` to the tracker service: every
page is a tab (its window id is its tab id, and pages opened by
another page are popup windows), ``context.route`` delivers each
outgoing request to the gate and applies the verdict, and the
context cookie jar answers cookie enumeration.

A small report-only init script wraps the ``document.cookie``
setter so cookie assignments are reported together with the call
stack that made them; the cookie itself is still set normally.
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any

from playwright import async_api

from trackingtracker.analysis import candidates
from trackingtracker.models import requests
from trackingtracker.utils import errors, logger
from trackingtracker.utils.url import get_domain_from_url

if TYPE_CHECKING:
    from trackingtracker.service import TrackerService

log = logger.create_logger("BrowserHost")

_COOKIE_BINDING = "__trackingTrackerCookieSet"

_COOKIE_HOOK_SCRIPT = """
(() => {
  const desc = Object.getOwnPropertyDescriptor(Document.prototype, 'cookie');
  if (!desc || !desc.set || !desc.get) return;
  Object.defineProperty(Document.prototype, 'cookie', {
    configurable: true,
    enumerable: desc.enumerable,
    get() { return desc.get.call(this); },
    set(value) {
      try { window.%s(String(value), new Error().stack || ''); } catch (e) {}
      desc.set.call(this, value);
    },
  });
})();
""" % _COOKIE_BINDING


class StaticHost:
    """Host stand-in when no browser is attached: no cookies, only normal windows."""

    async def get_all(self, domain: str) -> list[requests.HostCookie]:
        return []

    async def get_window_type(self, window_id: int | None) -> requests.WindowType:
        return "normal"


class BrowserHost:
    """Connects one Playwright browser context to a ``TrackerService``."""

    def __init__(self, context: async_api.BrowserContext) -> None:
        self._context = context
        self._playwright: async_api.Playwright | None = None
        self._browser: async_api.Browser | None = None
        self._service: TrackerService | None = None
        self._tab_ids = itertools.count(1)
        self._tabs: dict[async_api.Page, int] = {}
        self._pages: dict[int, async_api.Page] = {}

    @classmethod
    async def launch(cls, *, headless: bool = False) -> BrowserHost:
        """Start Chromium with a fresh context."""
        pw = await async_api.async_playwright().start()
        browser = await pw.chromium.launch(headless=headless)
        context = await browser.new_context()
        host = cls(context)
        host._playwright = pw
        host._browser = browser
        log.info("Browser launched", {"headless": headless})
        return host

    async def attach(self, service: TrackerService) -> None:
        """Start delivering tab, history, cookie and request events."""
        self._service = service
        await self._context.expose_binding(_COOKIE_BINDING, self._on_cookie_set)
        await self._context.add_init_script(_COOKIE_HOOK_SCRIPT)
        self._context.on("page", self._on_page)
        await self._context.route("**/*", self._on_route)
        for page in self._context.pages:
            self._on_page(page)
        log.success("Browser host attached", {"tabs": len(self._pages)})

    async def open(self, url: str) -> async_api.Page:
        page = await self._context.new_page()
        await page.goto(url)
        return page

    async def close(self) -> None:
        """Close the context and, when launched here, the browser."""
        for closer in (self._context.close, getattr(self._browser, "close", None), getattr(self._playwright, "stop", None)):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as exc:
                log.warn("Error while closing browser", {"error": errors.get_error_message(exc)})

    # ── Host oracles ────────────────────────────────────────────

    async def get_all(self, domain: str) -> list[requests.HostCookie]:
        """Enumerate cookies whose domain normalises to *domain*."""
        cookies = await self._context.cookies()
        return [
            requests.HostCookie(
                name=c.get("name", ""),
                value=c.get("value", ""),
                domain=c.get("domain", ""),
                http_only=c.get("httpOnly", False),
                secure=c.get("secure", False),
            )
            for c in cookies
            if get_domain_from_url(c.get("domain", "").lstrip(".")) == domain
        ]

    async def get_window_type(self, window_id: int | None) -> requests.WindowType:
        page = self._pages.get(window_id) if window_id is not None else None
        if page is None:
            return "normal"
        return "popup" if await page.opener() is not None else "normal"

    # ── Event wiring ────────────────────────────────────────────

    def _on_page(self, page: async_api.Page) -> None:
        if page in self._tabs:
            return
        tab_id = next(self._tab_ids)
        self._tabs[page] = tab_id
        self._pages[tab_id] = page
        page.on("framenavigated", lambda frame: self._on_frame_navigated(page, frame))
        page.on("close", lambda _page: self._on_close(page))
        if self._service is not None:
            self._service.on_tab_updated(tab_id, page.url, tab_id)
            self._service.on_tab_activated(tab_id)

    def _on_close(self, page: async_api.Page) -> None:
        tab_id = self._tabs.pop(page, None)
        if tab_id is None:
            return
        self._pages.pop(tab_id, None)
        if self._service is not None:
            self._service.on_tab_removed(tab_id)

    def _on_frame_navigated(self, page: async_api.Page, frame: async_api.Frame) -> None:
        tab_id = self._tabs.get(page)
        if tab_id is None or self._service is None or frame != page.main_frame:
            return
        # Redirects may land on a different URL than the navigation request.
        self._service.on_tab_updated(tab_id, frame.url, tab_id)
        if frame.url.startswith(("http://", "https://")):
            self._service.on_history_visited(frame.url)

    def _tab_for_request(self, request: async_api.Request) -> int:
        try:
            page = request.frame.page
        except Exception:
            # Service worker and browser-initiated requests have no frame.
            return -1
        return self._tabs.get(page, -1)

    async def _on_route(self, route: async_api.Route, request: async_api.Request) -> None:
        if self._service is None:
            await route.continue_()
            return

        tab_id = self._tab_for_request(request)
        if tab_id >= 0 and request.is_navigation_request() and request.frame == request.frame.page.main_frame:
            self._service.on_tab_updated(tab_id, request.url, tab_id, loading=True)

        headers = await request.all_headers()
        if not any(k.lower() == "cookie" for k in headers):
            # The network stack attaches cookies after interception.
            jar = await self._context.cookies([request.url])
            if jar:
                headers["cookie"] = "; ".join(f"{c['name']}={c['value']}" for c in jar)

        verdict = self._service.on_before_send_headers(
            requests.InterceptedRequest(url=request.url, tab_id=tab_id, headers=headers)
        )
        if verdict.cancel:
            await route.abort("blockedbyclient")
        elif verdict.headers is not None:
            await route.continue_(headers=verdict.headers)
        else:
            await route.continue_()

    def _on_cookie_set(self, source: dict[str, Any], cookie_string: str, stack: str) -> None:
        page = source.get("page")
        tab_id = self._tabs.get(page) if page is not None else None
        if tab_id is None or self._service is None:
            return
        self._service.on_cookie_set(
            tab_id,
            requests.CookieSetReport(
                url=page.url,
                call_stack=candidates.extract_stack_urls(stack),
                cookie_string=cookie_string,
            ),
        )

