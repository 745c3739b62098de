"""In-memory cache with per-entry expiry."""
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """Thread-safe key/value cache whose entries expire after ``ttl`` seconds.

    Instances are created and owned by whoever wires the application
    together; nothing here is module-global.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl, value)

    def get_or_set(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        """Return the cached value or compute, store and return a new one."""
        value = self.get(key)
        if value is None:
            value = factory()
            self.set(key, value)
        return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one entry, or everything when no key is given."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
