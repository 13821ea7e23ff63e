"""Clock abstraction for delayed and polling work.

Everything that waits (the scheduler, the merge readiness gate, the lock
retry) sleeps through a Clock so tests can drive time deterministically:

- SystemClock: real wall clock and asyncio.sleep
- ManualClock: virtual time, advanced explicitly or automatically
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Protocol for providing time and sleeping."""

    def now(self) -> datetime:
        """Get the current UTC wall-clock time."""
        ...

    def monotonic(self) -> float:
        """Get a monotonic timestamp in seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for the given number of seconds."""
        ...


class SystemClock:
    """Default clock backed by the system clock and the event loop."""

    def now(self) -> datetime:
        """Get current UTC time from system clock."""
        return datetime.now(UTC)

    def monotonic(self) -> float:
        """Get the monotonic time of the running process."""
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        """Sleep on the running event loop."""
        await asyncio.sleep(max(0.0, seconds))


class ManualClock:
    """Virtual clock for tests.

    Sleepers are parked until advance() moves virtual time past their
    deadline. With auto_advance=True every sleep completes immediately and
    moves virtual time forward by the requested amount, which is enough for
    code that only sleeps inside a single task.

    Example:
        >>> clock = ManualClock(auto_advance=True)
        >>> await clock.sleep(10)
        >>> clock.monotonic()
        10.0
    """

    # Event loop turns given to woken tasks before advance() moves on
    SETTLE_ROUNDS = 50

    def __init__(
        self,
        start: datetime | None = None,
        *,
        auto_advance: bool = False,
    ) -> None:
        """Initialize the virtual clock.

        Args:
            start: Wall-clock time at virtual zero.
            auto_advance: Complete every sleep immediately.
        """
        self._start = start or datetime(2026, 1, 10, 12, 0, 0, tzinfo=UTC)
        self._elapsed = 0.0
        self._auto_advance = auto_advance
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._counter = itertools.count()
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        """Return the virtual wall-clock time."""
        return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        """Return seconds of virtual time elapsed since start."""
        return self._elapsed

    @property
    def pending_sleepers(self) -> int:
        """Number of tasks currently parked in sleep()."""
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def sleep(self, seconds: float) -> None:
        """Park the caller until virtual time reaches now + seconds."""
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)

        if self._auto_advance or seconds == 0:
            self._elapsed += seconds
            await asyncio.sleep(0)
            return

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(
            self._sleepers,
            (self._elapsed + seconds, next(self._counter), future),
        )
        await future

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, waking sleepers in deadline order.

        Args:
            seconds: Amount of virtual time to advance.
        """
        # Newly created tasks must reach their sleep before time moves
        await self._settle()
        target = self._elapsed + seconds

        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._elapsed = max(self._elapsed, deadline)
            if not future.done():
                future.set_result(None)
            await self._settle()

        self._elapsed = target
        await self._settle()

    async def _settle(self) -> None:
        """Yield to the event loop so woken tasks can run."""
        for _ in range(self.SETTLE_ROUNDS):
            await asyncio.sleep(0)
