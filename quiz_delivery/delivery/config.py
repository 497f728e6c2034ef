"""
Notion delivery configuration.

Environment Variables:
- NOTION_API_KEY: Integration token (required to enable delivery)
- NOTION_DATABASE_ID: Target database (required to enable delivery)
- NOTION_API_BASE_URL: API root (default: https://api.notion.com/v1)
- NOTION_DELIVERY_MAX_RETRIES: Attempts per item (default: 3)
- NOTION_DELIVERY_RETRY_DELAY_MS: Backoff base in milliseconds (default: 500)
- NOTION_DELIVERY_TIMEOUT_MS: Per-call timeout in milliseconds (default: 5000)
- AUTH_SECRET: Optional key for the hashed user id written to each page

Missing credentials disable delivery; they are never an error.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.notion.com/v1"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 500
DEFAULT_TIMEOUT_MS = 5000


def _get_optional_env(key: str) -> Optional[str]:
    """Get a stripped environment value, treating blank as unset."""
    value = os.getenv(key, "").strip()
    return value or None


def _get_env_positive_int(key: str, default: int) -> int:
    """Get a positive integer from the environment, falling back on bad input."""
    value = _get_optional_env(key)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {key}: {value}, using default: {default}")
        return default
    if parsed <= 0:
        logger.warning(f"Non-positive value for {key}: {value}, using default: {default}")
        return default
    return parsed


@dataclass(frozen=True)
class NotionConfig:
    """Resolved Notion delivery settings."""

    api_key: str
    database_id: str
    api_base_url: str = DEFAULT_API_BASE_URL
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    user_hash_secret: Optional[str] = None

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    @classmethod
    def from_env(cls) -> Optional["NotionConfig"]:
        """
        Build config from the environment.

        Returns:
            NotionConfig, or None when credentials are not configured
        """
        api_key = _get_optional_env("NOTION_API_KEY")
        database_id = _get_optional_env("NOTION_DATABASE_ID")

        if not api_key or not database_id:
            return None

        return cls(
            api_key=api_key,
            database_id=database_id,
            api_base_url=(_get_optional_env("NOTION_API_BASE_URL") or DEFAULT_API_BASE_URL).rstrip("/"),
            max_retries=_get_env_positive_int("NOTION_DELIVERY_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            retry_delay_ms=_get_env_positive_int("NOTION_DELIVERY_RETRY_DELAY_MS", DEFAULT_RETRY_DELAY_MS),
            timeout_ms=_get_env_positive_int("NOTION_DELIVERY_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            user_hash_secret=_get_optional_env("AUTH_SECRET"),
        )
