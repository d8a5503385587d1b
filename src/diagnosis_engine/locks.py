"""Per-user mutual exclusion.

Survey completion and refinement both read-modify-write the user's single
current diagnosis.  Sharing one :class:`UserLocks` between the survey
service and the refinement engine serializes those writers per user,
while different users proceed concurrently.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class UserLocks:
    """Lazily created ``asyncio.Lock`` per user id.

    Usage::

        locks = UserLocks()
        async with locks.hold("user-1"):
            ...  # read, compute, write
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def is_locked(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        async with self.get(user_id):
            yield
