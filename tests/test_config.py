"""Tests for environment-driven settings."""

from __future__ import annotations

import pathlib

import pytest

from trackingtracker import config


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("TRACKER_STORAGE_DIR", "UVICORN_PORT", "ENVIRONMENT", "LAUNCH_BROWSER"):
            monkeypatch.delenv(name, raising=False)
        settings = config.get_settings()
        assert settings.port == 3001
        assert settings.storage_dir == pathlib.Path(".data")
        assert not settings.launch_browser
        assert not settings.is_production

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRACKER_STORAGE_DIR", "/var/lib/trackers")
        monkeypatch.setenv("UVICORN_PORT", "8080")
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("SUBSCRIBER_QUEUE_SIZE", "16")
        settings = config.get_settings()
        assert settings.storage_dir == pathlib.Path("/var/lib/trackers")
        assert settings.port == 8080
        assert settings.is_production
        assert settings.subscriber_queue_size == 16

    def test_queue_size_must_be_positive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SUBSCRIBER_QUEUE_SIZE", "0")
        with pytest.raises(ValueError):
            config.get_settings()
