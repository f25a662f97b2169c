"""
Keyed asyncio locks for single-writer-per-aggregate sections.

Used to serialize work on one duel (keyed by duel id) or one player's guess
sequence (keyed by player id) within a process. Database row locks and
conditional updates cover the cross-process case.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Hashable


class KeyedLock:
    """Hands out one asyncio.Lock per key, dropping it once nobody waits on it."""

    def __init__(self):
        self._locks = {}
        self._waiters = defaultdict(int)
        self._guard = asyncio.Lock()

    @asynccontextmanager
    async def acquire(self, key: Hashable):
        async with self._guard:
            lock = self._locks.setdefault(key, asyncio.Lock())
            self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            async with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    self._waiters.pop(key, None)
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
