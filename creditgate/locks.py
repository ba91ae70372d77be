# creditgate/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Tuple


@dataclass
class UserLockRegistry:
    """
    One mutex per user id, alive only while someone holds or waits for it.
    Serializes same-user mutations inside this process; different users never
    share a lock. Cross-process serialization comes from the account row lock.
    """

    # user_id -> (lock, holders + waiters)
    _locks: Dict[str, Tuple[threading.Lock, int]] = None  # type: ignore
    _guard: threading.Lock = None  # type: ignore

    def __post_init__(self) -> None:
        self._locks = {}
        self._guard = threading.Lock()

    def _checkout(self, user_id: str) -> threading.Lock:
        with self._guard:
            lock, refs = self._locks.get(user_id) or (threading.Lock(), 0)
            self._locks[user_id] = (lock, refs + 1)
            return lock

    def _checkin(self, user_id: str) -> None:
        with self._guard:
            lock, refs = self._locks[user_id]
            if refs <= 1:
                del self._locks[user_id]
            else:
                self._locks[user_id] = (lock, refs - 1)

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        # the guard is never held while waiting on a user lock
        lock = self._checkout(user_id)
        try:
            with lock:
                yield
        finally:
            self._checkin(user_id)

    def is_held(self, user_id: str) -> bool:
        with self._guard:
            entry = self._locks.get(user_id)
        return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
