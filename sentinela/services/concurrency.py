from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager


def lock_for_update(query):
    """
    Row-level lock for ledger reads.

    SQLite ignores SELECT ... FOR UPDATE; the in-process locks below cover it.
    """
    return query.with_for_update()


class StoreGate:
    """Shared/exclusive gate over the whole store.

    Ledger mutations enter shared; backup snapshots and restores enter
    exclusive so they never interleave with a half-finished mutation.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def shared(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._writer = True
            while self._readers:
                self._cond.wait()
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


store_gate = StoreGate()


class _KeyedLocks:
    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def get(self, key: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


_material_locks = _KeyedLocks()
_personnel_locks = _KeyedLocks()
_registration_lock = threading.Lock()
_roster_lock = threading.Lock()


@contextmanager
def _holding(locks: list[threading.Lock]) -> Iterator[None]:
    acquired: list[threading.Lock] = []
    try:
        for lock in locks:
            lock.acquire()
            acquired.append(lock)
        yield
    finally:
        for lock in reversed(acquired):
            lock.release()


@contextmanager
def custody_guard(
    material_ids: Iterable[int] = (),
    personnel_ids: Iterable[int] = (),
    *,
    registration: bool = False,
) -> Iterator[None]:
    """Serialize custody work for the duration of one transaction.

    Lock order is fixed: registration-number lock, then materials, then
    personnel, each in ascending id order. Overlapping guards cannot deadlock.
    """
    locks = [_registration_lock] if registration else []
    locks += [_material_locks.get(material_id) for material_id in sorted(set(material_ids))]
    locks += [_personnel_locks.get(personnel_id) for personnel_id in sorted(set(personnel_ids))]
    with store_gate.shared(), _holding(locks):
        yield


def material_guard(material_ids: Iterable[int]):
    return custody_guard(material_ids)


@contextmanager
def roster_guard() -> Iterator[None]:
    with store_gate.shared(), _roster_lock:
        yield
