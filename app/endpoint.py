"""
Resolution of the upstream target for one forwarded request:
which key to send, which base URL to hit, and which path under it.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import httpx

from .auth import ACCESS_CODE_PREFIX, GOOGLE_API_KEY_HEADER, AuthResult, strip_bearer
from .logging_config import logger
from .settings import ProxyConfig


GOOGLE_PATH_PREFIX = "/api/google"
CUSTOM_ROUTE_PREFIX = "/api/custom_"
GOOGLE_SEGMENT = "/google/"

CUSTOM_ENDPOINT_HEADER = "x-custom-provider-endpoint"
CUSTOM_CONFIG_HEADER = "x-custom-provider-config"

STREAM_PARAM = ("alt", "sse")


@dataclass(frozen=True)
class CustomProviderConfig:
    endpoint: str = ""
    api_key: str = ""


def decode_custom_config(value: str | None) -> CustomProviderConfig | None:
    """
    Decode the base64 JSON blob `{"endpoint": ..., "apiKey": ...}`.

    A malformed blob is logged and ignored so the request falls back to
    the next base URL source.
    """
    if not value or not value.strip():
        return None

    # Accept the URL-safe alphabet and missing padding as well.
    text = value.strip().replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    try:
        raw = base64.b64decode(text, validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring malformed %s header: %s", CUSTOM_CONFIG_HEADER, exc)
        return None

    if not isinstance(data, dict):
        logger.warning("Ignoring %s header: expected a JSON object", CUSTOM_CONFIG_HEADER)
        return None

    endpoint = data.get("endpoint")
    api_key = data.get("apiKey")
    return CustomProviderConfig(
        endpoint=endpoint.strip() if isinstance(endpoint, str) else "",
        api_key=api_key.strip() if isinstance(api_key, str) else "",
    )


def normalize_base_url(value: str) -> str:
    """
    Ensure an http(s) scheme and drop a single trailing slash.
    """
    url = value.strip()
    if not url.lower().startswith(("http://", "https://")):
        url = f"https://{url}"
    if url.endswith("/"):
        url = url[:-1]
    return url


def resolve_base_url(
    headers: Mapping[str, str],
    config: ProxyConfig,
    *,
    use_server_config: bool,
    custom_config: CustomProviderConfig | None = None,
) -> str:
    """
    Priority: custom endpoint header, custom config blob, server-side
    GOOGLE_BASE_URL (only with server-config privilege), default.

    A blob endpoint is only honoured for callers using their own key, so
    the server key never travels to a host named in the blob.
    """
    blob_endpoint = "" if use_server_config or not custom_config else custom_config.endpoint
    candidates = (
        headers.get(CUSTOM_ENDPOINT_HEADER) or "",
        blob_endpoint,
        (config.server_base_url or "") if use_server_config else "",
        config.default_base_url,
    )
    for candidate in candidates:
        if candidate and candidate.strip():
            return normalize_base_url(candidate)
    return normalize_base_url(config.default_base_url)


def resolve_api_key(
    headers: Mapping[str, str],
    auth_result: AuthResult,
    config: ProxyConfig,
    *,
    custom_config: CustomProviderConfig | None = None,
) -> str:
    if auth_result.use_server_config:
        return config.server_api_key

    for name in (GOOGLE_API_KEY_HEADER, "authorization"):
        token = strip_bearer(headers.get(name))
        # Access codes authenticate against the proxy, never upstream.
        if token and not token.startswith(ACCESS_CODE_PREFIX):
            return token

    return custom_config.api_key if custom_config else ""


def resolve_subpath(url_path: str, subpath: str | None = None) -> str:
    """
    Use the explicit route parameter when given; otherwise derive the
    upstream path from the inbound URL path.
    """
    if subpath is not None:
        path = subpath
    else:
        path = url_path.replace(GOOGLE_PATH_PREFIX, "")
        if path.startswith(CUSTOM_ROUTE_PREFIX):
            idx = path.find(GOOGLE_SEGMENT)
            if idx >= 0:
                path = path[idx + len(GOOGLE_SEGMENT):]
    if not path.startswith("/"):
        path = "/" + path
    return path


def build_upstream_url(
    base_url: str,
    path: str,
    query_items: Iterable[tuple[str, str]] = (),
) -> str:
    url = httpx.URL(f"{base_url}{path}")
    first_values: dict[str, str] = {}
    for key, value in query_items:
        first_values.setdefault(key, value)
        url = url.copy_set_param(key, value)

    key, value = STREAM_PARAM
    if first_values.get(key) == value:
        url = url.copy_set_param(key, value)
    return str(url)


__all__ = [
    "CUSTOM_CONFIG_HEADER",
    "CUSTOM_ENDPOINT_HEADER",
    "CustomProviderConfig",
    "GOOGLE_PATH_PREFIX",
    "build_upstream_url",
    "decode_custom_config",
    "normalize_base_url",
    "resolve_api_key",
    "resolve_base_url",
    "resolve_subpath",
]
