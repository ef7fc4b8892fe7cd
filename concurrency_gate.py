"""
🚦 Concurrency Gates
====================
Bounded admission control for outgoing requests.

- ConcurrencyGate: a counting gate with a FIFO wait list. Holding a permit
  authorizes one in-flight request.
- EndpointLimiter: smaller gates for named heavy endpoints (full-text search,
  filtered/sorted listings), matched against the full request URL and nested
  inside the global gate.

Usage:
    gate = ConcurrencyGate(200)
    limiter = EndpointLimiter()
    limiter.register(r"[?&]keyword=", 20)

    async with gate:
        async with limiter.guard(url):
            ...
"""

import asyncio
import re
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Deque, List, Optional, Pattern, Tuple


class ConcurrencyGate:
    """
    Counting gate with strict FIFO hand-off.

    A release wakes the oldest waiter and hands it the permit directly, so the
    holder count never drops and rises again in between and late arrivals
    cannot overtake queued callers.
    """

    def __init__(self, max_permits: int, name: str = "global"):
        if max_permits < 1:
            raise ValueError("max_permits must be >= 1")
        self.name = name
        self.max_permits = max_permits
        self._holders = 0
        self._waiters: Deque[asyncio.Future] = deque()

        # Observability
        self.peak_holders = 0
        self.total_acquired = 0
        self.total_waited = 0

    @property
    def holders(self) -> int:
        return self._holders

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def acquire(self):
        if self._holders < self.max_permits and not self._waiters:
            self._admit()
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        self.total_waited += 1
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Permit was handed over just before the cancel landed
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise
        self.total_acquired += 1

    def release(self):
        if self._holders <= 0:
            raise RuntimeError(f"Gate '{self.name}' released more times than acquired")

        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # Holder count is unchanged: the permit moves to the waiter
                fut.set_result(None)
                return
        self._holders -= 1

    def _admit(self):
        self._holders += 1
        self.total_acquired += 1
        if self._holders > self.peak_holders:
            self.peak_holders = self._holders

    async def with_permit(self, op: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``op`` while holding a permit. The permit is always released."""
        await self.acquire()
        try:
            return await op()
        finally:
            self.release()

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.release()
        return False

    def stats(self) -> dict:
        return {
            "name": self.name,
            "max_permits": self.max_permits,
            "holders": self._holders,
            "waiting": len(self._waiters),
            "peak_holders": self.peak_holders,
            "total_acquired": self.total_acquired,
            "total_waited": self.total_waited,
        }


class EndpointLimiter:
    """Registry of URL-pattern-matched secondary gates for heavy endpoints."""

    def __init__(self):
        self._entries: List[Tuple[Pattern, ConcurrencyGate]] = []

    def register(self, pattern: str, max_permits: int) -> ConcurrencyGate:
        gate = ConcurrencyGate(max_permits, name=pattern)
        self._entries.append((re.compile(pattern), gate))
        return gate

    def match(self, url: str) -> Optional[ConcurrencyGate]:
        """First registered pattern found anywhere in the URL wins."""
        for pattern, gate in self._entries:
            if pattern.search(url):
                return gate
        return None

    @asynccontextmanager
    async def guard(self, url: str):
        gate = self.match(url)
        if gate is None:
            yield None
            return
        async with gate:
            yield gate

    @property
    def gates(self) -> List[ConcurrencyGate]:
        return [gate for _, gate in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
