from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

REDACTED = "***REDACTED***"

# Max characters of a request/response body copied into a log line.
BODY_PREVIEW_LIMIT = 500


_SENSITIVE_HEADER_NAMES = {
    "authorization",
    "proxy-authorization",
    "x-goog-api-key",
    "x-custom-provider-config",
    "cookie",
    "set-cookie",
}

_SENSITIVE_HEADER_TOKENS = ("key", "token", "secret", "auth", "cookie", "session")

_SENSITIVE_QUERY_PARAMS = {"key", "api_key", "apikey", "access_token"}


def sanitize_headers_for_log(
    headers: Mapping[str, str], *, mask_token: str = REDACTED
) -> dict[str, str]:
    """
    Return a copy of headers that is safe to write to a log line.

    Known credential headers and any header whose name mentions
    key/token/secret/auth/cookie/session are masked; the rest is kept
    so requests stay traceable.
    """
    sanitized: dict[str, str] = {}
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name in _SENSITIVE_HEADER_NAMES or any(
            token in lower_name for token in _SENSITIVE_HEADER_TOKENS
        ):
            sanitized[name] = mask_token
            continue
        sanitized[name] = value
    return sanitized


def sanitize_url_for_log(url: str, *, mask_token: str = REDACTED) -> str:
    """
    Mask credential query parameters (Gemini also accepts ?key=...).
    """
    parts = urlsplit(str(url))
    if not parts.query:
        return str(url)
    pairs = [
        (k, mask_token if k.lower() in _SENSITIVE_QUERY_PARAMS else v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(pairs, safe="*")))


def preview_text(text: str, limit: int = BODY_PREVIEW_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}...<{len(text) - limit} more chars>"


__all__ = [
    "BODY_PREVIEW_LIMIT",
    "REDACTED",
    "preview_text",
    "sanitize_headers_for_log",
    "sanitize_url_for_log",
]
