"""In-process critical sections keyed by resource id.

Row locks (``SELECT ... FOR UPDATE``) serialize writers across processes on
PostgreSQL; these locks serialize threads of one worker, which is what
SQLite (tests, single-node deployments) relies on.
"""
from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLock:
    """One re-entrant lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[Hashable, _Slot] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def _acquire_slot(self, key: Hashable) -> _Slot:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1
            return slot

    def _release_slot(self, key: Hashable, slot: _Slot) -> None:
        with self._lock:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        slot = self._acquire_slot(key)
        try:
            with slot.lock:
                yield
        finally:
            self._release_slot(key, slot)


# Never acquire a class lock while holding a purchase lock.
class_locks = KeyedLock()
purchase_locks = KeyedLock()


__all__ = ["KeyedLock", "class_locks", "purchase_locks"]
