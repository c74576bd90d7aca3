"""
URL and domain utility functions for tracker classification.

Domains are normalised with a deliberately small heuristic rather
than a full public-suffix lookup: it is pure, never touches the
network, and is cheap enough to run on every intercepted request.
"""

from __future__ import annotations

# Hosting platforms where sibling subdomains are unrelated sites.
_HOSTING_DOMAINS = frozenset(["googleusercontent", "amazonaws"])

# Second-level labels that behave like part of the public suffix
# (``example.co.uk``, ``example.com.au``, ``espn.go.com``).
_SECOND_LEVEL_FRAGMENTS = frozenset(["co", "com", "ne", "go"])

# Privileged browser pages that never take part in tracking decisions.
_INTERNAL_SCHEMES = (
    "chrome:",
    "chrome-extension:",
    "chrome-search:",
    "about:",
    "edge:",
    "devtools:",
    "data:",
    "blob:",
    "view-source:",
)

REFERRED_BY = "-referredby-"


def extract_host(url: str) -> str:
    """Return the lowercased host portion of *url*.

    Works on scheme-relative (``//cdn.example.com/x``) and
    scheme-less (``example.com/x``) inputs as well as full URLs.
    Userinfo and port are dropped.
    """
    host = url.strip()
    if "//" in host:
        host = host.split("//", 1)[1]
    for sep in ("/", "?", "#"):
        host = host.split(sep, 1)[0]
    host = host.rsplit("@", 1)[-1]
    host = host.split(":", 1)[0]
    return host.lower()


def get_domain_from_url(url: str) -> str:
    """Normalise a URL to the domain used for tracker attribution.

    Keeps the last two labels of the host, or the last three when
    the second-to-last label is a known second-level fragment.
    Hosts on ``googleusercontent``/``amazonaws`` are returned whole.

    Args:
        url: Any URL-ish string, e.g. ``"http://a.b.co.uk/x"``.

    Returns:
        The canonical domain, e.g. ``"b.co.uk"``.  Malformed input
        yields a best-effort string and never raises.
    """
    host = extract_host(url)
    labels = host.split(".")
    if len(labels) < 2:
        return host

    second = labels[-2]
    if second in _HOSTING_DOMAINS:
        return host
    if second in _SECOND_LEVEL_FRAGMENTS and len(labels) > 2:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def is_internal_url(url: str) -> bool:
    """Check whether *url* is a browser-internal or extension page."""
    return url.strip().lower().startswith(_INTERNAL_SCHEMES)


def has_attributable_domain(url: str | None) -> bool:
    """True when a tab URL can be attributed to a real site."""
    if not url or is_internal_url(url):
        return False
    return bool(extract_host(url))


def strip_referred_by(domain: str) -> str:
    """Reduce a ledger key like ``t.com-referredby-ad.net`` to ``t.com``."""
    return domain.split(REFERRED_BY, 1)[0]
