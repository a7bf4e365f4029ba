from __future__ import annotations

import logging
from typing import Any, Protocol

from lms_api.errors import LookupStoreError
from lms_api.lookup_cache import MISS, LookupCache

logger = logging.getLogger(__name__)


class LookupSource(Protocol):
    def query_active(self, category: str) -> list[dict[str, Any]]: ...


class LookupValidator:
    """Answer key-membership questions for lookup categories through a shared cache."""

    def __init__(self, *, cache: LookupCache, source: LookupSource) -> None:
        self._cache = cache
        self._source = source

    @property
    def cache(self) -> LookupCache:
        return self._cache

    def is_valid(self, category: str, key: str) -> bool:
        return key in self.get_valid_keys(category)

    def get_valid_keys(self, category: str) -> frozenset[str]:
        cached = self._cache.get(category)
        if cached is not MISS:
            return cached
        try:
            rows = self._source.query_active(category)
        except LookupStoreError:
            raise
        except Exception as exc:
            logger.warning("lookup_store_query_failed category=%s error=%s", category, type(exc).__name__)
            raise LookupStoreError(f"lookup store unavailable for category: {category}") from exc
        keys = [str(row["key"]) for row in rows if row.get("key") is not None]
        return self._cache.fill(category, keys)

    def invalidate(self, category: str | None = None) -> None:
        self._cache.invalidate(category)
