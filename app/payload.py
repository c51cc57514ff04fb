"""
Inbound body handling for the forwarding proxy.

The chat client tags its requests with routing metadata of its own
(``provider``, ``path``, ...) that the Generative Language API rejects as
unknown fields, so every configured key is removed at any depth before
the body goes upstream.
"""

import json
from collections.abc import Iterable
from typing import Any, Optional


class InvalidJSONBody(ValueError):
    """Raised when a non-empty inbound body is not valid JSON."""


def parse_json_body(raw: str) -> Any:
    """
    Parse the raw body text; an empty body parses to None.
    """
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidJSONBody(str(exc)) from exc


def strip_fields(value: Any, fields: Iterable[str]) -> Any:
    """
    Return a copy of a JSON value with every key in `fields` removed from
    all nested objects, including objects inside arrays.

    The input is never mutated and applying it twice changes nothing.
    """
    return _strip(value, frozenset(fields))


def _strip(value: Any, denied: frozenset[str]) -> Any:
    if isinstance(value, dict):
        return {k: _strip(v, denied) for k, v in value.items() if k not in denied}
    if isinstance(value, list):
        return [_strip(item, denied) for item in value]
    return value


def encode_upstream_body(value: Any) -> Optional[bytes]:
    """
    Serialise the sanitized body, or None when there is nothing to send:
    no body, null, a number or boolean, or an empty object, array or string.
    """
    if value is None or isinstance(value, (bool, int, float)):
        return None
    if not value:
        return None
    return json.dumps(value, ensure_ascii=False).encode("utf-8")


__all__ = [
    "InvalidJSONBody",
    "encode_upstream_body",
    "parse_json_body",
    "strip_fields",
]
