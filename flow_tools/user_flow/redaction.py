"""Redaction for flow log lines.

Step URLs and flags end up in logs; they can carry session tokens (OAuth fragments,
`?token=` parameters, `extraHeaders` cookies). Everything logged goes through here.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "passwd",
    "pwd",
    "authorization",
    "cookie",
    "session",
    "jwt",
    "bearer",
    "api-key",
    "api_key",
    "apikey",
)

# Exact only: "author"/"authorship" are fine.
_SENSITIVE_EXACT = {"auth"}


def is_sensitive_key(key: str) -> bool:
    k = (key or "").strip().lower()
    if not k:
        return False
    if k in _SENSITIVE_EXACT:
        return True
    return any(s in k for s in _SENSITIVE_SUBSTRINGS)


def _looks_like_query_string(value: str) -> bool:
    return bool(value) and "=" in value


def _redact_pairs(raw: str) -> tuple[str, bool]:
    pairs = parse_qsl(raw, keep_blank_values=True)
    out_pairs: list[tuple[str, str]] = []
    redacted_any = False
    for k, v in pairs:
        if is_sensitive_key(k) and v:
            out_pairs.append((k, "<redacted>"))
            redacted_any = True
        else:
            out_pairs.append((k, v))
    if not redacted_any:
        return raw, False
    return urlencode(out_pairs, doseq=True), True


def redact_url(url: str) -> str:
    """Mask sensitive query/fragment values and URL userinfo.

    Returns the input unchanged when nothing needs masking.
    """
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    netloc, query, fragment = parts.netloc, parts.query, parts.fragment
    changed = False

    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True

    if query:
        query, hit = _redact_pairs(query)
        changed = changed or hit

    if _looks_like_query_string(fragment):
        fragment, hit = _redact_pairs(fragment)
        changed = changed or hit

    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, fragment))


def _redacted_summary(value: Any) -> str:
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    if isinstance(value, (list, tuple, set)):
        return f"<redacted list len={len(value)}>"
    if isinstance(value, dict):
        return f"<redacted dict keys={len(value)}>"
    return "<redacted>"


def redact_flags(flags: dict[str, Any] | None) -> dict[str, Any]:
    """Redact a step-flags payload for logging (headers, cookies, credentials)."""
    out: dict[str, Any] = {}
    for k, v in (flags or {}).items():
        if is_sensitive_key(str(k)):
            out[k] = _redacted_summary(v)
        elif str(k).lower() == "extraheaders" and isinstance(v, dict):
            out[k] = {hk: (_redacted_summary(hv) if is_sensitive_key(str(hk)) else hv) for hk, hv in v.items()}
        elif isinstance(v, str) and "://" in v:
            out[k] = redact_url(v)
        else:
            out[k] = v
    return out


def describe_requestor(requestor: Any) -> str:
    """Short, log-safe description of a navigation requestor."""
    if isinstance(requestor, str):
        return redact_url(requestor)
    name = getattr(requestor, "__qualname__", None) or type(requestor).__name__
    return f"<callable {name}>"
