"""Delayed execution of resolved actions.

The Scheduler keeps at most one pending task per key, where a key is
(owner, repo, target number, action) and the action part also carries the
labels or comment id of label and delete_comment requests. Scheduling a key
that already has a pending task cancels that task first, so the latest
registration wins and a duplicate delivery cannot close or lock a target
twice.

Pending tasks live only in memory. A process restart drops them silently;
shutdown() cancels them and returns how many were lost.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from standardbot.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

TaskKey = tuple[str, str, int, str]
TaskFactory = Callable[[], Awaitable[Any]]


def format_key(key: TaskKey) -> str:
    """Render a key as owner/repo#number:kind for logs."""
    owner, repo, number, kind = key
    return f"{owner}/{repo}#{number}:{kind}"


class Scheduler:
    """Runs task factories after a delay, one pending task per key.

    Guarantees:
    - Scheduling a key cancels its pending task before registering the new one
    - A zero delay runs the task before schedule() returns, unless it is
      marked background or the same key is already running
    - Once a task starts running it is no longer pending and cannot be
      cancelled; a later task for the same key waits for it to finish
    """

    def __init__(self, clock: Clock | None = None) -> None:
        """Initialize the scheduler.

        Args:
            clock: Clock used to wait out delays.
        """
        self._clock = clock or SystemClock()
        self._pending: dict[TaskKey, asyncio.Task[Any]] = {}
        self._running: dict[TaskKey, asyncio.Future[None]] = {}

    @property
    def pending_keys(self) -> list[TaskKey]:
        """Keys with a task waiting for its delay to elapse."""
        return list(self._pending)

    def has_pending(self, key: TaskKey) -> bool:
        """Check whether a key has a pending task."""
        return key in self._pending

    async def schedule(
        self,
        key: TaskKey,
        delay_ms: int,
        factory: TaskFactory,
        *,
        background: bool = False,
    ) -> asyncio.Future[Any]:
        """Schedule a task, replacing any pending task for the same key.

        Args:
            key: Supersession key.
            delay_ms: Delay in milliseconds; 0 runs the task inline.
            factory: Zero-argument callable returning the awaitable to run.
            background: Run a zero-delay task as its own asyncio task
                instead of inline. Used for long-running work.

        Returns:
            A future resolving to the task's result. For an inline run it is
            already completed when returned.

        Raises:
            ValueError: If delay_ms is negative.
        """
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")

        if self.cancel(key):
            logger.info("Superseded pending task %s", format_key(key))

        # A run in progress for this key would block the caller until it ends
        if delay_ms == 0 and not background and key not in self._running:
            future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
            future.set_result(await self._run(key, factory))
            return future

        task = asyncio.create_task(
            self._fire_later(key, delay_ms, factory),
            name=f"standardbot:{format_key(key)}",
        )
        self._pending[key] = task
        logger.debug("Scheduled %s in %dms", format_key(key), delay_ms)
        return task

    def cancel(self, key: TaskKey) -> bool:
        """Cancel the pending task for a key.

        Returns:
            True if a pending task was cancelled.
        """
        task = self._pending.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def drain(self) -> None:
        """Wait until no task is pending or running."""
        while self._pending or self._running:
            waiting = [*self._pending.values(), *self._running.values()]
            await asyncio.gather(*waiting, return_exceptions=True)

    async def shutdown(self) -> int:
        """Cancel every pending task.

        Returns:
            Number of pending tasks dropped.
        """
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if tasks:
            logger.info("Cancelled %d pending task(s) on shutdown", len(tasks))
        return len(tasks)

    async def _fire_later(self, key: TaskKey, delay_ms: int, factory: TaskFactory) -> Any:
        if delay_ms:
            await self._clock.sleep(delay_ms / 1000)
        if self._pending.get(key) is asyncio.current_task():
            del self._pending[key]
        return await self._run(key, factory)

    async def _run(self, key: TaskKey, factory: TaskFactory) -> Any:
        """Run a task after any earlier run for the same key has finished."""
        prior = self._running.get(key)
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._running[key] = done
        try:
            if prior is not None and not prior.done():
                await asyncio.shield(prior)
            return await factory()
        except Exception:
            logger.exception("Scheduled task %s failed", format_key(key))
            return None
        finally:
            if not done.done():
                done.set_result(None)
            if self._running.get(key) is done:
                del self._running[key]
