"""
Short-lived in-process cache.

Entries expire lazily: an entry older than the TTL is dropped the next time it
is read. Nothing here is authoritative; every cached value can be rebuilt from
the database, so a stale or missing entry only costs an extra read.
"""
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import config


class TTLCache:
    def __init__(self, ttl: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, data: Any) -> None:
        with self._lock:
            self._entries[key] = (data, self._clock())

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            data, timestamp = item
            if self._clock() - timestamp > self.ttl:
                del self._entries[key]
                return None
            return data

    def clear(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


cache = TTLCache(ttl=config.CACHE_TTL_SECONDS)


def get_cache() -> TTLCache:
    return cache


def admin_key(email: str) -> str:
    return f"admin_{email}"


def service_key(category_id: str, service_id: str) -> str:
    return f"service_{category_id}/{service_id}"
