from collections.abc import Mapping
from dataclasses import dataclass

from .logging_config import logger
from .settings import ProxyConfig, hash_access_code


# Tokens in the Authorization header carrying this prefix are access codes,
# anything else is treated as the caller's own Gemini API key.
ACCESS_CODE_PREFIX = "nk-"

GOOGLE_API_KEY_HEADER = "x-goog-api-key"


@dataclass(frozen=True)
class AuthResult:
    error: bool = False
    msg: str | None = None
    use_server_config: bool = False


def strip_bearer(value: str | None) -> str:
    """
    Remove every 'Bearer ' marker and surrounding whitespace from a header value.
    """
    return (value or "").strip().replace("Bearer ", "").strip()


def parse_authorization(authorization: str | None) -> tuple[str, str]:
    """
    Split an Authorization header into (access_code, api_key); at most one is set.
    """
    token = strip_bearer(authorization)
    if token.startswith(ACCESS_CODE_PREFIX):
        return token[len(ACCESS_CODE_PREFIX):], ""
    return "", token


def authenticate(
    headers: Mapping[str, str],
    config: ProxyConfig,
    *,
    fallback_api_key: str = "",
) -> AuthResult:
    """
    Decide whether the caller may use the proxy, and with whose credentials.

    Callers bringing their own key (Authorization, x-goog-api-key, or the
    apiKey of a custom provider config) use it; everyone else must present
    a valid access code when codes are configured, and then borrows the
    server-side key.
    """
    access_code, api_key = parse_authorization(headers.get("authorization"))
    if not api_key:
        api_key = strip_bearer(headers.get(GOOGLE_API_KEY_HEADER))
    if not api_key:
        api_key = (fallback_api_key or "").strip()

    if config.need_code and not api_key:
        if not access_code:
            return AuthResult(error=True, msg="empty access code")
        if hash_access_code(access_code) not in config.access_code_hashes:
            return AuthResult(error=True, msg="wrong access code")

    if config.hide_user_api_key and api_key:
        return AuthResult(
            error=True,
            msg="you are not allowed to access with your own api key",
        )

    if api_key:
        return AuthResult(use_server_config=False)

    if not config.server_api_key:
        logger.warning("auth: no caller key and no server GOOGLE_API_KEY configured")
    return AuthResult(use_server_config=True)


__all__ = [
    "ACCESS_CODE_PREFIX",
    "AuthResult",
    "GOOGLE_API_KEY_HEADER",
    "authenticate",
    "parse_authorization",
    "strip_bearer",
]
