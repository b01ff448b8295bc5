"""Hostname normalization and matching."""

import re
from typing import Iterable

_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def normalize_domain(value: str) -> str:
    """
    Reduce a URL or host string to a bare lowercase hostname.

    Strips the scheme, path, query, fragment, port and a leading "www.".
    e.g., "https://www.YouTube.com/watch?v=1" -> "youtube.com"
    """
    host = _SCHEME.sub("", value.strip())
    for sep in ("/", "?", "#"):
        host = host.split(sep, 1)[0]
    host = host.rsplit("@", 1)[-1]
    host = host.split(":", 1)[0]
    # Remove trailing dot if present (DNS FQDN format)
    host = host.rstrip(".").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def host_matches(host: str, pattern: str) -> bool:
    """
    Check if `host` is `pattern` or one of its subdomains.

    e.g., "m.youtube.com" matches "youtube.com"
    """
    host = normalize_domain(host)
    pattern = normalize_domain(pattern)
    if not host or not pattern:
        return False
    return host == pattern or host.endswith("." + pattern)


def matches_any(host: str, patterns: Iterable[str]) -> bool:
    return any(host_matches(host, p) for p in patterns)
