"""
Origin normalisation and matching.
Guards the shared page channel: a message is only trusted when its sender
origin equals the host page origin.
"""
import fnmatch
from typing import Optional
from urllib.parse import urlparse

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}


def normalize_origin(url: str) -> Optional[str]:
    """Return `scheme://host[:port]` for a URL or origin string, None if malformed."""
    parsed = _safe_parse(url)
    if parsed is None:
        return None
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or parsed.netloc).lower()
    try:
        port = parsed.port
    except ValueError:
        return None
    if port is None or _DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def same_origin(candidate: Optional[str], expected: str) -> bool:
    if not candidate:
        return False
    normalized = normalize_origin(candidate)
    return normalized is not None and normalized == normalize_origin(expected)


def is_monitored_channel(url: object, match: str) -> bool:
    """True when a channel URL carries the monitored marker."""
    text = str(url)
    if not match:
        return False
    return match in text


def matches_pattern(url: str, pattern: str) -> bool:
    """Glob match used to find the host page surface (e.g. `https://host/*`)."""
    return fnmatch.fnmatchcase(url, pattern)


def _safe_parse(url: str):
    try:
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            return None
        return parsed
    except (TypeError, ValueError):
        return None
