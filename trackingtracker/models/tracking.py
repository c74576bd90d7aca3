"""Pydantic models for tracker observations, subscribers and notifications."""

from __future__ import annotations

import enum
from typing import Literal

import pydantic

from trackingtracker.utils import errors, serialization
from trackingtracker.utils.url import REFERRED_BY


class Category(enum.StrEnum):
    """Behavioural tracker categories."""

    ANALYTICS = "A"
    VANILLA = "B"
    FORCED = "C"
    REFERRED = "D"
    PERSONAL = "E"
    REFERRED_ANALYTICS = "F"


# Categories whose records carry the referring domain.
REFERRED_CATEGORIES = frozenset([Category.REFERRED, Category.REFERRED_ANALYTICS])


def parse_category(value: str) -> Category:
    """Parse a category letter, raising ``InvalidCategoryError`` if unknown."""
    try:
        return Category(value.strip().upper())
    except ValueError:
        raise errors.InvalidCategoryError(value) from None


class TrackerRecord(pydantic.BaseModel):
    """One observation of a tracker on a site.

    ``referrer`` is only meaningful for referred categories (D, F);
    those records are keyed as ``domain-referredby-referrer`` in
    every aggregate view so distinct attribution chains stay apart.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    domain: str
    category: Category
    referrer: str | None = None

    @pydantic.model_validator(mode="after")
    def _check_referrer(self) -> TrackerRecord:
        if self.category in REFERRED_CATEGORIES and not self.referrer:
            raise ValueError(f"category {self.category} requires a referrer")
        if self.category not in REFERRED_CATEGORIES and self.referrer is not None:
            raise ValueError(f"category {self.category} cannot carry a referrer")
        return self

    @property
    def key(self) -> str:
        """Ledger key, with the referrer suffix for referred categories."""
        if self.referrer is not None:
            return f"{self.domain}{REFERRED_BY}{self.referrer}"
        return self.domain


class AnalyticsCandidate(pydantic.BaseModel):
    """A third-party script was seen setting a cookie on the page."""

    model_config = serialization.CAMEL_CONFIG

    setter_domain: str
    cookie_value: str

    @property
    def value(self) -> str:
        """The value half of ``cookie_value``; leaks are matched against it."""
        return self.cookie_value.partition("=")[2]


class TrackerSummary(pydantic.BaseModel):
    """Per-tracker aggregate: categories seen and the sites it was seen on."""

    model_config = serialization.CAMEL_CONFIG

    domain: str
    category_list: list[Category] = pydantic.Field(default_factory=list)
    tracked_sites: list[str] = pydantic.Field(default_factory=list)


class Subscriber(pydantic.BaseModel):
    """An external collaborator registered for tracking notifications."""

    model_config = serialization.CAMEL_CONFIG

    id: str
    name: str
    link: str | None = None


class TrackingNotification(pydantic.BaseModel):
    """Pushed to subscribers whenever a tracker is recorded."""

    model_config = serialization.CAMEL_CONFIG

    type: Literal["trackingNotification"] = "trackingNotification"
    tab_id: int
    domain: str
