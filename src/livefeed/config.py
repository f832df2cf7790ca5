"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars (and a local .env file).
Variable names match the upstream deployment: BOOKIES_API_URL,
POLL_INTERVAL_SECONDS, and so on. No prefix.

Learn: The upstream URL is the one setting the hub cannot run without.
It defaults to empty so the module imports cleanly (tests, CLI --help);
require_upstream_url() is the single place that turns "missing" into a
fatal ConfigurationError, called when the hub starts.
"""

import httpx
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_POLL_INTERVAL = 5
DEFAULT_PING_INTERVAL = 15


class ConfigurationError(Exception):
    """Unrecoverable misconfiguration. The process must not proceed."""


class Settings(BaseSettings):
    """All hub configuration."""

    # Upstream
    bookies_api_url: str = ""
    upstream_timeout_seconds: float = 4.0
    source_id: str = "bookiesapi"

    # Loops
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL
    ping_interval_seconds: int = DEFAULT_PING_INTERVAL

    # Fanout
    send_timeout_seconds: float = 5.0

    # Server
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8083

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("poll_interval_seconds", mode="before")
    @classmethod
    def fallback_poll_interval(cls, value):
        """Unparseable or non-positive intervals fall back to the default."""
        try:
            interval = int(value)
        except (TypeError, ValueError):
            return DEFAULT_POLL_INTERVAL
        return interval if interval > 0 else DEFAULT_POLL_INTERVAL

    @field_validator("ping_interval_seconds", mode="before")
    @classmethod
    def fallback_ping_interval(cls, value):
        try:
            interval = int(value)
        except (TypeError, ValueError):
            return DEFAULT_PING_INTERVAL
        return interval if interval > 0 else DEFAULT_PING_INTERVAL


def require_upstream_url(config: Settings) -> str:
    """Return the configured upstream URL or raise ConfigurationError.

    Empty, unparseable, non-http(s) and host-less URLs are all fatal.
    """
    url = config.bookies_api_url.strip()
    if not url:
        raise ConfigurationError(
            "BOOKIES_API_URL is not set. The hub has nothing to poll; "
            "set it in the environment or in .env."
        )

    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise ConfigurationError(f"BOOKIES_API_URL is not a valid URL: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigurationError(
            "BOOKIES_API_URL must be an absolute http(s) URL with a host."
        )
    return url


# Singleton — import this everywhere
settings = Settings()
