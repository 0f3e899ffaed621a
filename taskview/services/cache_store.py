"""In-memory response cache with per-key TTL classes and params fingerprints."""

import json
import time
from typing import Any, Callable, Iterable, Optional
from pydantic import BaseModel, ConfigDict

from taskview.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

DEFAULT_SHORT_TTL_SECONDS = 20 * 60
DEFAULT_LONG_TTL_SECONDS = 60 * 60


def fingerprint(params: Any) -> str:
    """Canonical form of a params object; equal structures give equal fingerprints."""
    return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


class CacheEntry(BaseModel):
    """A stored response. Replaced wholesale, never mutated."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: Any
    fetched_at: float
    params_fingerprint: str


class CacheStore:
    """
    Key/value store of time-stamped, params-fingerprinted entries.

    Expiry is checked lazily on read. Keys containing one of the
    ``long_ttl_markers`` live for ``long_ttl_seconds``; everything else uses
    ``short_ttl_seconds``. There is no size bound: entries only leave through
    expiry-on-read or invalidation.
    """

    def __init__(
        self,
        short_ttl_seconds: int = DEFAULT_SHORT_TTL_SECONDS,
        long_ttl_seconds: int = DEFAULT_LONG_TTL_SECONDS,
        long_ttl_markers: Iterable[str] = (),
        clock: Optional[Callable[[], float]] = None,
    ):
        self.short_ttl_seconds = short_ttl_seconds
        self.long_ttl_seconds = long_ttl_seconds
        self.long_ttl_markers = tuple(long_ttl_markers)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def _now(self) -> float:
        return self._clock() if self._clock else time.time()

    def ttl_for(self, key: str) -> int:
        if any(marker in key for marker in self.long_ttl_markers):
            return self.long_ttl_seconds
        return self.short_ttl_seconds

    def set(self, key: str, data: Any, params: Any) -> None:
        self._entries[key] = CacheEntry(
            data=data,
            fetched_at=self._now(),
            params_fingerprint=fingerprint(params),
        )
        logger.debug("Cache entry stored", cache_key=key, ttl_seconds=self.ttl_for(key))

    def get(self, key: str, params: Any) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._now() > entry.fetched_at + self.ttl_for(key):
            del self._entries[key]
            logger.debug("Cache entry expired", cache_key=key)
            return None

        if entry.params_fingerprint != fingerprint(params):
            del self._entries[key]
            logger.debug("Cache entry params changed", cache_key=key)
            return None

        return entry.data

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_by_prefix(self, substring: str) -> int:
        """Remove every entry whose key contains ``substring``."""
        doomed = [key for key in self._entries if substring in key]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("Cache entries invalidated", pattern=substring, removed=len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
