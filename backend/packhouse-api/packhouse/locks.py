# packhouse/locks.py

import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterable, Iterator, List


class SessionLocks:
    """Re-entrant lock per key ("session:<id>", "order:<id>").

    Serialises mutations that share a key inside this process only. Other
    API processes are kept out by the SERIALIZABLE transactions the store
    opens, backed by the conditional writes in the services. An entry lives
    only while someone holds or waits on its key.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, holders and waiters]
        self._locks: Dict[str, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._checkout(key)
        try:
            with lock:
                yield
        finally:
            self._checkin(key)

    @contextmanager
    def hold_many(self, keys: Iterable[str]) -> Iterator[None]:
        # sorted so two callers with overlapping sets never deadlock
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.hold(key))
            yield


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


def order_key(order_id: str) -> str:
    return f"order:{order_id}"
