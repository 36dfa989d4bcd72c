import time
import threading
from typing import Any, Dict, Optional


class TTLCache:
    """Thread-safe TTL cache for expensive chain reads"""

    def __init__(self, default_ttl: int = 300):
        self._cache: Dict[str, tuple] = {}
        self._lock = threading.RLock()
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired"""
        with self._lock:
            if key in self._cache:
                value, expiry = self._cache[key]
                if time.time() < expiry:
                    return value
                del self._cache[key]
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._cache[key] = (value, time.time() + (ttl or self.default_ttl))

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


blockchain_cache = TTLCache(default_ttl=300)
