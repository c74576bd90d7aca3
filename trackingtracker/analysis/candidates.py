"""Analytics candidates from in-page cookie assignments.

When a script assigns ``document.cookie`` the page hook reports the
call stack.  If the outermost script on that stack is hosted on a
different domain than the page, the third party is a candidate for
analytics tracking (category A) or, when its identifier later leaks
to someone else, referred analytics (category F).
"""

from __future__ import annotations

import re

from trackingtracker.models import tracking
from trackingtracker.utils.url import get_domain_from_url

# URLs in a V8 or SpiderMonkey stack trace
# (``at f (https://t.com/a.js:1:2)`` / ``f@https://t.com/a.js:1:2``).
_STACK_URL_RE = re.compile(r"\b(?:https?|wss?|file)://[^\s()<>'\"`]+", re.IGNORECASE)


def extract_stack_urls(stack: str) -> list[str]:
    """Pull every script URL out of a raw stack trace, in order."""
    return _STACK_URL_RE.findall(stack)


def first_cookie_pair(cookie_string: str) -> str:
    """Return the ``name=value`` part of a ``document.cookie`` assignment."""
    return cookie_string.split(";", 1)[0].strip()


def parse_candidate(
    page_url: str,
    call_stack: list[str],
    cookie_string: str,
) -> tracking.AnalyticsCandidate | None:
    """Build a candidate when a third-party script set the cookie.

    Args:
        page_url: URL of the page whose ``document.cookie`` was set.
        call_stack: Script URLs on the stack, innermost first.
        cookie_string: The string assigned to ``document.cookie``.

    Returns:
        The candidate, or ``None`` for first-party or unattributable sets.
    """
    if not call_stack:
        return None
    pair = first_cookie_pair(cookie_string)
    if not pair:
        return None

    setter_domain = get_domain_from_url(call_stack[-1])
    if not setter_domain or setter_domain == get_domain_from_url(page_url):
        return None
    return tracking.AnalyticsCandidate(setter_domain=setter_domain, cookie_value=pair)
