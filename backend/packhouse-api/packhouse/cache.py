# packhouse/cache.py

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional

import structlog

log = structlog.get_logger(__name__)


class ResultCache:
    """Small bounded TTL cache for computed read views.

    Not a correctness mechanism: owners call ``clear()`` on every mutation and
    the store stays the source of truth. When full, the oldest entry goes.
    """

    def __init__(self, max_entries: int = 10, ttl: float = 5.0, clock: Callable[[], float] = time.monotonic, name: str = "results"):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.ttl = ttl
        self.name = name
        self._clock = clock
        self._data: "OrderedDict[Hashable, tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            hit = self._data.get(key)
            if hit is None:
                return None
            stored_at, value = hit
            if self._clock() - stored_at >= self.ttl:
                del self._data[key]
                return None
            return value

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._data.pop(key, None)
            while len(self._data) >= self.max_entries:
                self._data.popitem(last=False)
            self._data[key] = (self._clock(), value)

    def discard(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._data)
            self._data.clear()
        if dropped:
            log.debug("cache.cleared", cache=self.name, entries=dropped)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
