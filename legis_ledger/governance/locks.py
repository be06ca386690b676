"""
Per-entity critical sections.

Vote casting and tally reconciliation on one law serialize on that law's
lock; session-level transitions serialize on the session's lock. Locks are
always taken session first, law second.

The registry is created per service bundle and injected, never shared at
module level. An entry lives only while some coroutine holds or waits on
it, so deleted sessions and laws leave nothing behind.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID


class LockRegistry:
    """Reference-counted ``asyncio.Lock`` per entity id."""

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._users: dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, key: UUID) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_held(self, key: UUID) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
