"""
Connection Test Queue — process-wide ceiling on simultaneous vendor checks.

At most ``max_concurrent`` tasks run at once, across every tenant and vendor.
Excess submissions wait in strict arrival order and start as slots free up.
A slot is released the moment its task finishes, whatever the outcome.

``submit`` returns a Future. There is no built-in wait timeout; callers bound
the wait themselves (``asyncio.wait_for``). Cancelling a Future whose task has
not started yet withdraws it. A task that already started runs to completion
so an in-flight vendor call is never cut off.

Usage:
    from vendorvault.orchestrator.queue import get_test_queue
    queue = get_test_queue()
    result = await queue.submit(lambda: handler.test_connection(creds))
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from vendorvault.errors import QueueClosedError

logger = logging.getLogger(__name__)


@dataclass
class QueuedTask:
    """One pending or running submission."""

    execute: Callable[[], Awaitable[Any]]
    result: asyncio.Future
    label: str = ""
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class ConnectionTestQueue:
    """Bounded-concurrency FIFO runner for connection tests.

    Owns its slot counter; must be used from a single event loop.
    """

    def __init__(self, max_concurrent: int = 2):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self._waiting: deque[QueuedTask] = deque()
        self._running = 0
        self._closed = False
        self._runners: set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return self._running

    @property
    def queued(self) -> int:
        return sum(1 for t in self._waiting if not t.result.done())

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, execute: Callable[[], Awaitable[Any]], *, label: str = "") -> asyncio.Future:
        """Queue ``execute`` and return a Future for its result.

        Raises QueueClosedError after ``shutdown``.
        """
        if self._closed:
            raise QueueClosedError("Connection test queue is shut down")
        loop = asyncio.get_running_loop()
        task = QueuedTask(execute=execute, result=loop.create_future(), label=label)
        self._waiting.append(task)
        logger.info(
            "Queued connection test %s (running=%d, queued=%d, max=%d)",
            label or "<unnamed>",
            self._running,
            self.queued,
            self.max_concurrent,
        )
        self._pump()
        return task.result

    def _pump(self) -> None:
        while self._running < self.max_concurrent and self._waiting:
            task = self._waiting.popleft()
            if task.result.done():
                # Withdrawn (cancelled) before it started
                logger.debug("Skipping withdrawn connection test %s", task.label)
                continue
            self._running += 1
            runner = asyncio.get_running_loop().create_task(self._run(task))
            self._runners.add(runner)
            runner.add_done_callback(self._runners.discard)

    async def _run(self, task: QueuedTask) -> None:
        waited = (datetime.now(UTC) - task.submitted_at).total_seconds()
        logger.info("Starting connection test %s after %.2fs in queue", task.label, waited)
        try:
            result = await task.execute()
        except asyncio.CancelledError:
            if not task.result.done():
                task.result.cancel()
            raise
        except Exception as e:
            if not task.result.done():
                task.result.set_exception(e)
        else:
            if not task.result.done():
                task.result.set_result(result)
        finally:
            self._running -= 1
            logger.info(
                "Finished connection test %s (running=%d, queued=%d)",
                task.label,
                self._running,
                self.queued,
            )
            self._pump()

    def status(self) -> dict:
        return {
            "queued": self.queued,
            "running": self._running,
            "max_concurrent": self.max_concurrent,
        }

    def _reject_waiting(self, message: str) -> int:
        rejected = 0
        while self._waiting:
            task = self._waiting.popleft()
            if not task.result.done():
                task.result.set_exception(QueueClosedError(message))
                rejected += 1
        return rejected

    def clear(self) -> int:
        """Reject every waiting task. Running tasks are unaffected."""
        rejected = self._reject_waiting("Queue cleared")
        if rejected:
            logger.warning("Cleared %d waiting connection test(s)", rejected)
        return rejected

    async def shutdown(self, wait: bool = True) -> None:
        """Refuse new submissions, reject waiters and optionally drain running tasks."""
        self._closed = True
        rejected = self._reject_waiting("Connection test queue is shut down")
        logger.info("Connection test queue shut down (%d waiting rejected)", rejected)
        if wait and self._runners:
            await asyncio.gather(*self._runners, return_exceptions=True)


# Singleton
_queue: ConnectionTestQueue | None = None


def get_test_queue() -> ConnectionTestQueue:
    """Get the process-wide queue, sized from VENDORVAULT_TEST_CONCURRENCY."""
    global _queue
    if _queue is None:
        from vendorvault.config import get_config

        _queue = ConnectionTestQueue(get_config().test_concurrency)
    return _queue


def reset_test_queue() -> None:
    """Drop the cached queue (for testing)."""
    global _queue
    _queue = None
