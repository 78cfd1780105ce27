"""
Small in-process TTL cache used by the places client and interests service.
"""
import logging
import threading
import time
from typing import Any, Dict, Hashable, Optional, Tuple

LOGGER = logging.getLogger(__name__)


class TTLCache:
    def __init__(self, default_ttl: float, clock=time.monotonic):
        self.default_ttl = float(default_ttl)
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, max_age: Optional[float] = None) -> Optional[Any]:
        """Return the cached value, or None when missing or older than max_age (default TTL)."""
        ttl = self.default_ttl if max_age is None else float(max_age)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                LOGGER.debug("cache miss %s", key)
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= ttl:
                del self._entries[key]
                LOGGER.debug("cache expired %s", key)
                return None
        LOGGER.debug("cache hit %s", key)
        return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def delete(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            keys = list(self._entries.keys())
        methods = sorted({k[0] for k in keys if isinstance(k, tuple) and k})
        return {"total_entries": len(keys), "methods": methods}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
