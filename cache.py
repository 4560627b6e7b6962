"""In-process TTL cache for API responses."""

import logging
import threading
import time
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300


class TTLCache:
    """Key/value map whose entries expire `ttl` seconds after they are set.

    Expired entries are dropped lazily when read.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: dict = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() > expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._data if k.startswith(prefix)]
            for key in keys:
                del self._data[key]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


api_cache = TTLCache()


def post_list_key(page: int, limit: int, category=None, author=None, featured=None, slug=None) -> str:
    return f"posts-{page}-{limit}-{category or 'all'}-{author or 'all'}-{featured}-{slug or 'all'}"


def invalidate_post_caches() -> int:
    removed = api_cache.delete_prefix("posts-")
    logger.info("Invalidated %d cached post listings", removed)
    return removed
