"""
locks.py - Per-key async coordination primitives.

KeyedSingleFlight runs at most one coroutine per key; callers that arrive
while it is in flight await the same result instead of starting their own.
KeyedLock is a plain per-key mutex whose entries are dropped once idle.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Hashable


class KeyedSingleFlight:

    def __init__(self):
        self._inflight: Dict[Hashable, asyncio.Future] = {}

    def in_flight(self, key: Hashable) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        # shield so one cancelled waiter does not cancel the shared work
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Future):
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # mark retrieved; every waiter re-raises it through shield()
            task.exception()


class KeyedLock:

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable):
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
