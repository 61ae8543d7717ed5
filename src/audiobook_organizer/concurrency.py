"""Bounded async task queue and retry with exponential backoff."""

from __future__ import annotations

import asyncio
import random
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger

from .errors import QueueCancelled

log = logger.bind(stage="concurrency")

T = TypeVar("T")
TaskFn = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class QueueStatus:
    queued: int
    running: int
    completed: int
    failed: int
    total: int


class TaskQueue:
    """FIFO queue that runs at most `concurrency` tasks at once.

    Slots are handed directly from a finishing task to the oldest waiter, so
    a waiting task starts as soon as a running one settles.
    """

    def __init__(self, concurrency: int = 2) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.concurrency = concurrency
        self._waiting: deque[asyncio.Future] = deque()
        self._idle_waiters: list[asyncio.Future] = []
        self._running = 0
        self._completed = 0
        self._failed = 0

    async def add(self, fn: TaskFn[T]) -> T:
        """Run `fn()` once a slot is free and return its result.

        Raises whatever the task raised, or QueueCancelled if the queue was
        cleared while the task was still waiting.
        """
        if self._running >= self.concurrency or self._waiting:
            gate = asyncio.get_running_loop().create_future()
            self._waiting.append(gate)
            try:
                await gate
            except asyncio.CancelledError:
                if gate.done() and not gate.cancelled() and gate.exception() is None:
                    # Slot was handed to us just before cancellation; pass it on
                    self._release()
                else:
                    self._discard(gate)
                raise
        else:
            self._running += 1

        try:
            result = await fn()
        except BaseException:
            self._failed += 1
            raise
        else:
            self._completed += 1
            return result
        finally:
            self._release()

    def status(self) -> QueueStatus:
        queued = len(self._waiting)
        return QueueStatus(
            queued=queued,
            running=self._running,
            completed=self._completed,
            failed=self._failed,
            total=queued + self._running + self._completed + self._failed,
        )

    def clear(self, reason: str = "Queue cleared") -> int:
        """Reject every waiting task with QueueCancelled. Running tasks continue."""
        cleared = 0
        while self._waiting:
            gate = self._waiting.popleft()
            if not gate.done():
                gate.set_exception(QueueCancelled(reason))
                cleared += 1
        if cleared:
            log.info(f"Cleared {cleared} waiting task(s): {reason}")
        self._notify_idle()
        return cleared

    async def wait_for_all(self) -> None:
        """Return once nothing is running or waiting."""
        if self._is_idle():
            return
        waiter = asyncio.get_running_loop().create_future()
        self._idle_waiters.append(waiter)
        await waiter

    # -- internals --

    def _is_idle(self) -> bool:
        return self._running == 0 and not self._waiting

    def _release(self) -> None:
        while self._waiting:
            gate = self._waiting.popleft()
            if not gate.done():
                gate.set_result(None)
                return
        self._running -= 1
        self._notify_idle()

    def _discard(self, gate: asyncio.Future) -> None:
        try:
            self._waiting.remove(gate)
        except ValueError:
            pass
        self._notify_idle()

    def _notify_idle(self) -> None:
        if not self._is_idle():
            return
        waiters, self._idle_waiters = self._idle_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)


def backoff_delay(
    attempt: int,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    jitter: float = 0.1,
) -> float:
    """Delay before retry number `attempt` (1-based)."""
    base = min(initial_delay * (2 ** (attempt - 1)), max_delay)
    return base + random.uniform(0, jitter)


async def retry(
    fn: TaskFn[T],
    *,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    jitter: float = 0.1,
    should_retry: Callable[[BaseException], bool] | None = None,
) -> T:
    """Call `fn()` once, then up to `max_retries` more times with backoff.

    Stops early when `should_retry(error)` returns False. The last error is
    re-raised.
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as e:
            if attempt > max_retries:
                log.debug(f"Giving up after {attempt} attempt(s): {e}")
                raise
            if should_retry is not None and not should_retry(e):
                log.debug(f"Not retrying {type(e).__name__}: {e}")
                raise
            delay = backoff_delay(attempt, initial_delay, max_delay, jitter)
            log.warning(
                f"Attempt {attempt}/{max_retries + 1} failed ({e}), "
                f"retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)


async def run_with_concurrency(
    fns: Iterable[TaskFn[Any]],
    concurrency: int = 2,
) -> list[Any]:
    """Run every task with at most `concurrency` in flight.

    Results come back in input order. The first exception propagates.
    """
    queue = TaskQueue(concurrency)
    return list(await asyncio.gather(*(queue.add(fn) for fn in fns)))
