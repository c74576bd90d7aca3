"""
Service configuration.

Centralises environment variable names and defaults for the
HTTP server, the persisted state directory and the optional
Playwright browser host.

Uses ``pydantic_settings.BaseSettings`` for automatic environment
variable binding, type coercion, and validation.
"""

from __future__ import annotations

import pathlib

import pydantic
import pydantic_settings


class Settings(pydantic_settings.BaseSettings):
    """Runtime settings loaded from environment variables.

    Attributes:
        storage_dir: Directory holding the persisted JSON blobs.
        host: Interface the HTTP server binds to.
        port: Port the HTTP server listens on.
        environment: ``development`` or ``production``.
        launch_browser: Start a Playwright browser wired to the service.
        start_url: Page opened when the browser host starts.
        subscriber_queue_size: Notifications buffered per subscriber stream.
    """

    storage_dir: pathlib.Path = pydantic.Field(
        default=pathlib.Path(".data"), validation_alias="TRACKER_STORAGE_DIR"
    )
    host: str = pydantic.Field(default="127.0.0.1", validation_alias="UVICORN_HOST")
    port: int = pydantic.Field(default=3001, validation_alias="UVICORN_PORT")
    environment: str = pydantic.Field(default="development", validation_alias="ENVIRONMENT")
    launch_browser: bool = pydantic.Field(default=False, validation_alias="LAUNCH_BROWSER")
    start_url: str = pydantic.Field(default="about:blank", validation_alias="START_URL")
    subscriber_queue_size: int = pydantic.Field(
        default=256, ge=1, validation_alias="SUBSCRIBER_QUEUE_SIZE"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
