"""
Error types and helpers for consistent error message extraction.
"""

from __future__ import annotations


class TrackerServiceError(Exception):
    """Base class for errors raised by the tracker service."""


class InvalidCategoryError(TrackerServiceError, ValueError):
    """Raised when a category outside A-F is requested."""

    def __init__(self, category: str) -> None:
        super().__init__(f"Unknown tracker category {category!r}. Valid categories: A, B, C, D, E, F")
        self.category = category


class UnknownSubscriberError(TrackerServiceError, KeyError):
    """Raised when an operation names a subscriber that is not registered."""

    def __init__(self, subscriber_id: str) -> None:
        super().__init__(subscriber_id)
        self.subscriber_id = subscriber_id

    def __str__(self) -> str:
        return f"Subscriber {self.subscriber_id!r} is not registered"


def get_error_message(error: BaseException | object) -> str:
    """
    Safely extract an error message from an unknown error type.
    """
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return "Unknown error"
