"""Per-uid mutual exclusion."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class PerKeyLock:
    """Non-reentrant asyncio lock keyed by uid.

    Serializes create/disconnect/disposable sends for one uid without
    contending across uids. Lock objects are dropped once nobody holds or
    waits for them, so the map does not grow with every uid ever seen.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    async def acquire(self, uid: str) -> None:
        lock = self._locks.get(uid)
        if lock is None:
            lock = self._locks[uid] = asyncio.Lock()
        self._users[uid] = self._users.get(uid, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(uid)
            raise

    def release(self, uid: str) -> None:
        """Release the lock for uid.

        Raises:
            RuntimeError: If the lock is not held.
        """
        lock = self._locks.get(uid)
        if lock is None or not lock.locked():
            raise RuntimeError("release of an unheld uid lock")
        lock.release()
        self._forget(uid)

    def locked(self, uid: str) -> bool:
        lock = self._locks.get(uid)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, uid: str) -> AsyncIterator[None]:
        await self.acquire(uid)
        try:
            yield
        finally:
            self.release(uid)

    def _forget(self, uid: str) -> None:
        remaining = self._users.get(uid, 0) - 1
        if remaining > 0:
            self._users[uid] = remaining
            return
        self._users.pop(uid, None)
        self._locks.pop(uid, None)
