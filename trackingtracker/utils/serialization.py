"""Shared serialization helpers for camelCase conversion.

API responses and SSE payloads use camelCase keys; the
``snake_to_camel`` generator is plugged into every public
Pydantic model config.
"""

from __future__ import annotations

import pydantic


def snake_to_camel(name: str) -> str:
    """Convert a snake_case string to camelCase.

    Args:
        name: A snake_case identifier such as ``"tab_id"``.

    Returns:
        The camelCase equivalent, e.g. ``"tabId"``.
    """
    parts = name.split("_")
    return parts[0] + "".join(w.capitalize() for w in parts[1:])


CAMEL_CONFIG = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)
