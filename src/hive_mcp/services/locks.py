from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable

logger = logging.getLogger(__name__)


class KeyedLocks:
    """In-memory exclusive sections keyed by arbitrary hashable tuples.

    Design:
    - One ``asyncio.Lock`` per key, created on first use.
    - Locks are dropped once no coroutine holds or waits on them, so the
      table only grows with concurrently active keys.
    - Scoped to a single event loop; all durable state lives in the store.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, *key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        if lock.locked():
            logger.debug("Waiting for exclusive section %s", key)
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_held(self, *key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
