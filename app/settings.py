import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"

# Keys the chat client adds for its own multi-provider routing.
DEFAULT_STRIPPED_BODY_FIELDS = "provider,path"


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    _project_root = Path(__file__).parent.parent

    model_config = SettingsConfigDict(
        env_file=str(_project_root / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Upstream credentials / endpoints
    google_api_key: str = Field(
        "",
        alias="GOOGLE_API_KEY",
        description="Server-side Gemini API key used when the caller is allowed to use server config",
    )
    google_base_url: Optional[str] = Field(
        default=None,
        alias="GOOGLE_BASE_URL",
        description="Server-side base URL override, e.g. a regional mirror",
    )
    gemini_base_url: str = Field(
        GEMINI_BASE_URL,
        alias="GEMINI_BASE_URL",
        description="Default upstream base URL when nothing else is configured",
    )

    # Request rewriting
    stripped_body_fields_raw: str = Field(
        DEFAULT_STRIPPED_BODY_FIELDS,
        alias="STRIPPED_BODY_FIELDS",
        description=(
            "Comma-separated JSON keys removed at every depth before forwarding, "
            "e.g. 'provider,path,model,stream'"
        ),
    )

    # HTTP timeouts
    upstream_timeout: float = Field(
        600.0,
        alias="UPSTREAM_TIMEOUT",
        description="Deadline in seconds for the upstream call to answer",
    )

    # Access control
    access_codes_raw: Optional[str] = Field(
        default=None,
        alias="CODE",
        description="Comma-separated access codes; when set, callers without their own key must send one",
    )
    hide_user_api_key: bool = Field(
        False,
        alias="HIDE_USER_API_KEY",
        description="Reject callers that bring their own Gemini API key",
    )

    # CORS
    cors_allow_origins: str = Field(
        "*",
        alias="CORS_ALLOW_ORIGINS",
        description="Allowed origins, comma separated",
    )
    cors_allow_credentials: bool = Field(
        False,
        alias="CORS_ALLOW_CREDENTIALS",
        description="Whether cross-origin requests may carry credentials",
    )
    cors_allow_methods: str = Field(
        "*",
        alias="CORS_ALLOW_METHODS",
        description="Allowed methods, comma separated, * for all",
    )
    cors_allow_headers: str = Field(
        "*",
        alias="CORS_ALLOW_HEADERS",
        description="Allowed request headers, comma separated, * for all",
    )

    # Application log level for our geminiproxy logger.
    # Can be overridden via LOG_LEVEL env var, e.g. "DEBUG" while debugging.
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: Optional[str] = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Asia/Shanghai'. Defaults to system local time.",
    )
    log_dir: str = Field(
        "logs",
        alias="LOG_DIR",
        description="Directory for the daily application log files",
    )

    def get_stripped_body_fields(self) -> Tuple[str, ...]:
        """
        Return the configured denylist from STRIPPED_BODY_FIELDS.
        Whitespace is stripped and empty entries are ignored.
        """
        return tuple(
            item.strip()
            for item in (self.stripped_body_fields_raw or "").split(",")
            if item.strip()
        )

    def get_access_code_hashes(self) -> frozenset[str]:
        """
        Access codes are only ever compared as md5 hex digests.
        """
        if not self.access_codes_raw:
            return frozenset()
        return frozenset(
            hash_access_code(code)
            for code in self.access_codes_raw.split(",")
            if code.strip()
        )


def hash_access_code(code: str) -> str:
    return hashlib.md5(code.strip().encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ProxyConfig:
    """
    Snapshot of the settings one forwarded request depends on.

    The forwarding handler receives this at construction instead of
    reading the process-wide settings, so tests can build one directly.
    """

    server_api_key: str = ""
    server_base_url: Optional[str] = None
    default_base_url: str = GEMINI_BASE_URL
    stripped_body_fields: Tuple[str, ...] = ("provider", "path")
    upstream_timeout: float = 600.0
    access_code_hashes: frozenset[str] = frozenset()
    hide_user_api_key: bool = False

    @property
    def need_code(self) -> bool:
        return bool(self.access_code_hashes)

    @classmethod
    def from_settings(cls, source: "Settings") -> "ProxyConfig":
        return cls(
            server_api_key=source.google_api_key or "",
            server_base_url=source.google_base_url or None,
            default_base_url=source.gemini_base_url or GEMINI_BASE_URL,
            stripped_body_fields=source.get_stripped_body_fields(),
            upstream_timeout=source.upstream_timeout,
            access_code_hashes=source.get_access_code_hashes(),
            hide_user_api_key=source.hide_user_api_key,
        )


settings = Settings()  # Reads from environment if available


__all__ = [
    "DEFAULT_STRIPPED_BODY_FIELDS",
    "GEMINI_BASE_URL",
    "ProxyConfig",
    "Settings",
    "hash_access_code",
    "settings",
]
