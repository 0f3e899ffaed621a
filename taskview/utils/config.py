"""Engine configuration loaded from environment variables."""

import os
from typing import Optional
from pydantic import BaseModel, Field


ENV_PREFIX = "TASKVIEW"


def _env_name(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env_int(suffix: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(_env_name(suffix))
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _env_float(suffix: str, default: float) -> float:
    raw = os.environ.get(_env_name(suffix))
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    # Only positive values are usable as timeouts
    return value if value > 0 else default


class EngineConfig(BaseModel):
    """Tunables for cache lifetimes, debounce delays, paging and HTTP access."""
    api_base_url: str = Field(default="http://localhost:5000", description="Base URL of the task REST API")
    request_timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")
    page_cache_ttl_seconds: int = Field(default=20 * 60, ge=0, description="TTL for paged query results")
    aggregate_cache_ttl_seconds: int = Field(default=60 * 60, ge=0, description="TTL for the aggregate light query")
    search_debounce_ms: int = Field(default=500, ge=0, description="Settle delay for free-text search")
    date_debounce_ms: int = Field(default=300, ge=0, description="Settle delay for date-range edits")
    default_page_size: int = Field(default=10, ge=1)
    fallback_limit: int = Field(default=1000, ge=1, description="Limit sent to the full series endpoint")
    default_retention_days: int = Field(default=15, ge=0, description="Bin retention used until settings load")

    @classmethod
    def from_env(cls, api_base_url: Optional[str] = None) -> "EngineConfig":
        """Build a config from TASKVIEW_* environment variables."""
        defaults = cls()
        return cls(
            api_base_url=api_base_url or os.environ.get(_env_name("API_BASE_URL"), defaults.api_base_url),
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds),
            page_cache_ttl_seconds=_env_int("PAGE_CACHE_TTL_SECONDS", defaults.page_cache_ttl_seconds),
            aggregate_cache_ttl_seconds=_env_int("AGGREGATE_CACHE_TTL_SECONDS", defaults.aggregate_cache_ttl_seconds),
            search_debounce_ms=_env_int("SEARCH_DEBOUNCE_MS", defaults.search_debounce_ms),
            date_debounce_ms=_env_int("DATE_DEBOUNCE_MS", defaults.date_debounce_ms),
            default_page_size=_env_int("DEFAULT_PAGE_SIZE", defaults.default_page_size, minimum=1),
            fallback_limit=_env_int("FALLBACK_LIMIT", defaults.fallback_limit, minimum=1),
            default_retention_days=_env_int("DEFAULT_RETENTION_DAYS", defaults.default_retention_days),
        )

    @property
    def search_debounce_seconds(self) -> float:
        return self.search_debounce_ms / 1000

    @property
    def date_debounce_seconds(self) -> float:
        return self.date_debounce_ms / 1000
