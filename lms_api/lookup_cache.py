"""Per-category cache of active lookup keys.

Entries expire lazily: a read past ``expires_at`` drops the entry and reports a
miss, there is no background sweep. The cache never performs I/O.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from lms_api.settings import DEFAULT_LOOKUP_CACHE_MAX_ENTRIES, DEFAULT_LOOKUP_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


class _Miss:
    _instance: "_Miss | None" = None

    def __new__(cls) -> "_Miss":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


@dataclass(frozen=True)
class CacheEntry:
    values: frozenset[str]
    expires_at: float


class LookupCache:
    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_LOOKUP_CACHE_TTL_SECONDS,
        max_entries: int = DEFAULT_LOOKUP_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._lock = threading.RLock()
        self._entries: dict[str, CacheEntry] = {}
        self._clock = clock
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)

    def get(self, category: str) -> frozenset[str] | _Miss:
        with self._lock:
            entry = self._entries.get(category)
            if entry is None:
                return MISS
            if self._clock() >= entry.expires_at:
                self._entries.pop(category, None)
                logger.debug("lookup_cache_expired category=%s", category)
                return MISS
            return entry.values

    def fill(self, category: str, values: Iterable[str], ttl_seconds: float | None = None) -> frozenset[str]:
        ttl = self.ttl_seconds if ttl_seconds is None else float(ttl_seconds)
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        frozen = frozenset(str(v) for v in values)
        with self._lock:
            if category not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_one()
            self._entries[category] = CacheEntry(values=frozen, expires_at=self._clock() + ttl)
        logger.debug("lookup_cache_filled category=%s size=%s ttl=%s", category, len(frozen), ttl)
        return frozen

    def invalidate(self, category: str | None = None) -> None:
        with self._lock:
            if category is None:
                self._entries.clear()
            else:
                self._entries.pop(category, None)
        logger.debug("lookup_cache_invalidated category=%s", category or "*")

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "entries": {category: len(entry.values) for category, entry in self._entries.items()},
            }

    def _evict_one(self) -> None:
        victim = min(self._entries.items(), key=lambda item: item[1].expires_at)[0]
        self._entries.pop(victim, None)
        logger.debug("lookup_cache_evicted category=%s", victim)
