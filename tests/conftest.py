"""Shared fixtures for the test suite."""

from __future__ import annotations

import pathlib

import pytest

from trackingtracker.models import requests
from trackingtracker.service import TrackerService
from trackingtracker.storage import blobs

# ── Host Fakes ──────────────────────────────────────────────────


class FakeCookieStore:
    """In-memory host cookie store keyed by normalised domain."""

    def __init__(self) -> None:
        self.cookies: dict[str, list[requests.HostCookie]] = {}
        self.fail = False

    def add(self, domain: str, name: str, value: str) -> None:
        self.cookies.setdefault(domain, []).append(requests.HostCookie(name=name, value=value, domain=domain))

    async def get_all(self, domain: str) -> list[requests.HostCookie]:
        if self.fail:
            raise RuntimeError("cookie store unavailable")
        return list(self.cookies.get(domain, []))


class FakeWindows:
    """Window oracle where selected window ids are popups."""

    def __init__(self) -> None:
        self.popups: set[int] = set()
        self.fail = False

    async def get_window_type(self, window_id: int | None) -> requests.WindowType:
        if self.fail:
            raise RuntimeError("window lookup failed")
        return "popup" if window_id in self.popups else "normal"


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def store(tmp_path: pathlib.Path) -> blobs.BlobStore:
    """A blob store rooted in a temporary directory."""
    return blobs.BlobStore(tmp_path / "state")


@pytest.fixture()
def cookie_store() -> FakeCookieStore:
    return FakeCookieStore()


@pytest.fixture()
def windows() -> FakeWindows:
    return FakeWindows()


@pytest.fixture()
def service(store: blobs.BlobStore, cookie_store: FakeCookieStore, windows: FakeWindows) -> TrackerService:
    """A tracker service over fake host collaborators."""
    return TrackerService(store, cookies=cookie_store, windows=windows)
