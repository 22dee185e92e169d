"""URL helpers."""

from __future__ import annotations

from urllib.parse import urlsplit


def is_url(value: str) -> bool:
    """Return True when ``value`` parses as an absolute URL with a host."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)
