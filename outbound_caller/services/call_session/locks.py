"""Per-call serialization of webhook handling."""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple


class CallLockRegistry:
    """
    Keyed asyncio locks, one per call id.

    Entries are reference counted and dropped once no coroutine holds or
    waits on them, so the registry does not grow with finished calls.
    """

    def __init__(self):
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, call_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(call_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[call_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[call_id]
            if users <= 1:
                del self._locks[call_id]
            else:
                self._locks[call_id] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._locks


# Module-level registry shared by every request (single process)
call_locks = CallLockRegistry()
