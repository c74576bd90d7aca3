"""Pydantic models for the host-facing request interception contract."""

from __future__ import annotations

import enum
from typing import Literal

import pydantic

from trackingtracker.utils import serialization

WindowType = Literal["normal", "popup"]


class InterceptedRequest(pydantic.BaseModel):
    """An outgoing request as delivered by the network layer."""

    model_config = serialization.CAMEL_CONFIG

    url: str
    tab_id: int
    headers: dict[str, str] = pydantic.Field(default_factory=dict)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup; empty values count as absent."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value or None
        return None

    def headers_without(self, name: str) -> dict[str, str]:
        """Copy of the headers with every *name* header removed."""
        lowered = name.lower()
        return {k: v for k, v in self.headers.items() if k.lower() != lowered}


class GateAction(enum.StrEnum):
    ALLOW = "allow"
    CANCEL = "cancel"
    STRIP = "strip"


class GateVerdict(pydantic.BaseModel):
    """The synchronous allow/cancel/modify decision for one request."""

    action: GateAction = GateAction.ALLOW
    headers: dict[str, str] | None = None

    @property
    def cancel(self) -> bool:
        return self.action is GateAction.CANCEL


class HostCookie(pydantic.BaseModel):
    """A cookie as enumerated from the host cookie store."""

    model_config = serialization.CAMEL_CONFIG

    name: str
    value: str
    domain: str = ""
    http_only: bool = False
    secure: bool = False


class CookieSetReport(pydantic.BaseModel):
    """Reported by the in-page hook when a script assigns ``document.cookie``."""

    model_config = serialization.CAMEL_CONFIG

    url: str
    call_stack: list[str] = pydantic.Field(default_factory=list)
    cookie_string: str


class HistoryRemoval(pydantic.BaseModel):
    """A history removal event: specific URLs or everything."""

    model_config = serialization.CAMEL_CONFIG

    urls: list[str] = pydantic.Field(default_factory=list)
    all_history: bool = False
