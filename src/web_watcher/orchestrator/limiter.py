"""In-memory FIFO limiter capping concurrently executing jobs."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class ConcurrencyLimiter:
    """Run at most ``limit`` tasks at once; dispatch the rest strictly FIFO.

    The waiting list is unbounded. A slot freed by a finishing task is handed
    directly to the oldest waiter, so a caller arriving later can never
    overtake one that is already queued.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._waiters)

    async def enqueue(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` once a slot is free and return its outcome."""

        await self._acquire()
        try:
            return await task()
        finally:
            self._release()

    async def wait_idle(self) -> None:
        """Block until nothing is running or waiting."""

        await self._idle.wait()

    async def _acquire(self) -> None:
        self._idle.clear()
        if self._active < self.limit and not self._waiters:
            self._active += 1
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was already handed over; pass it on.
                self._release()
            else:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
                self._update_idle()
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._active -= 1
        self._update_idle()

    def _update_idle(self) -> None:
        if self._active == 0 and not self._waiters:
            self._idle.set()
