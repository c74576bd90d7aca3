"""
Per-tab session state.

A ``TabSession`` mirrors one browser tab: its current page, the
window it lives in, the trackers seen since the last navigation
and the pending analytics candidates.  The store is synchronously
readable so the request gate never waits on a tab lookup.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator

from trackingtracker.models import tracking
from trackingtracker.utils import logger

log = logger.create_logger("Tabs")


@dataclasses.dataclass
class TabSession:
    """Mutable state for one open tab.

    ``epoch`` increases every time the tab starts loading; work that
    captured an older epoch belongs to a page load that is gone.
    """

    tab_id: int
    url: str = ""
    window_id: int | None = None
    epoch: int = 0
    trackers: list[tracking.TrackerRecord] = dataclasses.field(default_factory=list)
    blocked: list[str] = dataclasses.field(default_factory=list)
    candidates: list[tracking.AnalyticsCandidate] = dataclasses.field(default_factory=list)

    def reset(self) -> None:
        """Forget per-load state (trackers, blocked markers, candidates)."""
        self.trackers = []
        self.blocked = []
        self.candidates = []
        self.epoch += 1


class SessionStore:
    """Owns every ``TabSession``, tied 1:1 to the host's tab lifecycle."""

    def __init__(self) -> None:
        self._tabs: dict[int, TabSession] = {}
        self._active: int | None = None

    def __iter__(self) -> Iterator[TabSession]:
        return iter(list(self._tabs.values()))

    def __len__(self) -> int:
        return len(self._tabs)

    def get(self, tab_id: int) -> TabSession | None:
        return self._tabs.get(tab_id)

    def update(self, tab_id: int, url: str, window_id: int | None = None, *, loading: bool = False) -> TabSession:
        """Apply a tab update event, creating the session on first sight.

        Args:
            tab_id: Host tab identifier.
            url: The tab's current URL.
            window_id: Host window the tab belongs to.
            loading: True when the tab transitioned into "loading";
                per-load state is reset so reloads and cross-site
                navigations start clean.
        """
        session = self._tabs.get(tab_id)
        if session is None:
            session = TabSession(tab_id=tab_id)
            self._tabs[tab_id] = session
            log.debug("Tab opened", {"tabId": tab_id})
        session.url = url
        if window_id is not None:
            session.window_id = window_id
        if loading:
            session.reset()
        if self._active is None:
            self._active = tab_id
        return session

    def remove(self, tab_id: int) -> None:
        self._tabs.pop(tab_id, None)
        if self._active == tab_id:
            self._active = None
        log.debug("Tab closed", {"tabId": tab_id})

    def activate(self, tab_id: int) -> None:
        self._active = tab_id

    def active(self) -> TabSession | None:
        """The session of the tab the user is looking at, if any."""
        if self._active is None:
            return None
        return self._tabs.get(self._active)

    def add_candidate(self, tab_id: int, candidate: tracking.AnalyticsCandidate) -> bool:
        """Append a candidate to the tab's pending list."""
        session = self._tabs.get(tab_id)
        if session is None:
            log.debug("Candidate for unknown tab dropped", {"tabId": tab_id})
            return False
        session.candidates.append(candidate)
        return True

    def clear(self) -> None:
        """Drop per-load state of every tab without closing any."""
        for session in self._tabs.values():
            session.reset()
