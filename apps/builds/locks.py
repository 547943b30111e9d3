import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class KeyedLock:
    """One asyncio.Lock per key, kept only while someone holds or waits on it.

    Locks are created lazily and dropped on last release, so a lock never
    outlives the event loop it was first awaited on.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
            self._users[key] = 0
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def active_keys(self):
        return set(self._locks)
