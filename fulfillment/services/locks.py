"""
Keyed asyncio locks.

Serializes read-modify-write sequences on the same hub, drone or order
within one process. Rows are additionally read FOR UPDATE so that several
worker processes on PostgreSQL serialize on the database as well.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Hashable


class KeyedLock:
    """One asyncio.Lock per key, created on demand and dropped when idle."""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, *keys: Hashable):
        """
        Acquire the locks for all keys, in sorted order to avoid deadlocks.

        Example:
            async with hub_drone_locks.hold(("hub", 1), ("drone", 7)):
                ...
        """
        ordered = sorted(set(keys), key=repr)
        for key in ordered:
            self._users[key] += 1
        acquired = []
        try:
            for key in ordered:
                lock = self._locks.setdefault(key, asyncio.Lock())
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in ordered:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


# Hub <-> drone assignment and drone state changes
fleet_locks = KeyedLock()

# Per-order status updates
order_locks = KeyedLock()
