"""Per-key request coalescing for upstream-heavy work.

Two primitives share one process-wide table of in-flight keys:

``do(key, fn)``
    The first caller for *key* runs ``fn`` (the leader).  Callers arriving
    while it runs wait on the leader's future and receive the same result
    or exception instead of starting a second computation.  If the leader
    is cancelled, one waiter takes over as the new leader.

``lock(key)``
    Exclusive per-key section.  Waiters sleep on an ``asyncio.Event`` set
    when the holder leaves, then re-check, so callers must consult any
    shared cache after acquiring.

Check-and-set on the tables happens without an ``await`` in between, so it
is atomic within the event loop.  Entries are removed in ``finally`` blocks
on every exit path.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


class SingleFlight:
    """Coalesces concurrent work per key.

    Not thread-safe; intended for a single asyncio event loop.
    """

    def __init__(self) -> None:
        self._calls: dict[str, asyncio.Future[Any]] = {}
        self._locks: dict[str, asyncio.Event] = {}
        self._waiters: dict[str, int] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._calls or key in self._locks

    def waiters(self, key: str) -> int:
        return self._waiters.get(key, 0)

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run *fn* once per key at a time and share its outcome."""
        while True:
            existing = self._calls.get(key)
            if existing is None:
                break
            log.debug("single_flight_join", key=key)
            self._waiters[key] = self._waiters.get(key, 0) + 1
            try:
                await asyncio.wait([existing])
            finally:
                self._release_waiter(key)
            if existing.cancelled():
                # Leader went away; compete to become the new one.
                continue
            return existing.result()

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._calls[key] = future
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except BaseException as exc:
            future.set_exception(exc)
            # Mark as retrieved; the leader re-raises it itself.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            del self._calls[key]

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """Hold *key* exclusively for the duration of the block."""
        while (event := self._locks.get(key)) is not None:
            log.debug("single_flight_wait", key=key)
            self._waiters[key] = self._waiters.get(key, 0) + 1
            try:
                await event.wait()
            finally:
                self._release_waiter(key)

        event = asyncio.Event()
        self._locks[key] = event
        try:
            yield
        finally:
            del self._locks[key]
            event.set()

    def _release_waiter(self, key: str) -> None:
        count = self._waiters.get(key, 0) - 1
        if count > 0:
            self._waiters[key] = count
        else:
            self._waiters.pop(key, None)
