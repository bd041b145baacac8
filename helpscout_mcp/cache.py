"""
In-memory TTL cache for GET responses.

Keys look like ``GET:/conversations?{"page":1}`` so callers can invalidate a
whole resource family by prefix after a mutation.
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

import orjson

from .utils.logging import get_logger

logger = get_logger(__name__)


def build_cache_key(method: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Normalize method, path and params into a stable key."""
    key = f"{method.upper()}:{path}"
    if params:
        cleaned = {k: v for k, v in params.items() if v is not None}
        if cleaned:
            key += "?" + orjson.dumps(cleaned, option=orjson.OPT_SORT_KEYS).decode("utf-8")
    return key


class ResponseCache:
    """Bounded TTL cache; oldest entries are evicted first once full."""

    def __init__(
        self,
        default_ttl: int = 300,
        max_size: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.misses += 1
            return None

        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return

        if key in self._entries:
            del self._entries[key]
        self._entries[key] = (self._clock() + ttl, value)

        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache entry evicted", extra={"data": {"key": evicted}})

    def clear(self, prefix: Optional[str] = None) -> int:
        """Drop every entry, or only those whose key starts with ``prefix``."""
        if prefix is None:
            count = len(self._entries)
            self._entries.clear()
            return count

        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("Cache invalidated", extra={"data": {"prefix": prefix, "count": len(doomed)}})
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}
