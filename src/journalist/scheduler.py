"""Detached execution of journal work (fire-and-forget with an optional priority hint)."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Set

Work = Callable[[], Awaitable[None]]

_log = logging.getLogger(__name__)


class TaskPriority(str, Enum):
    """Scheduling hint for detached work. Has no effect on what the journal records."""
    BACKGROUND = "background"
    UTILITY = "utility"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    USER_INITIATED = "user_initiated"


class Scheduler(Protocol):
    """Runtime capability the journal needs for fire-and-forget work."""

    def spawn(self, work: Work, *, priority: Optional[TaskPriority] = None) -> concurrent.futures.Future:
        """Start ``work`` concurrently and return without waiting for it."""

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until all spawned work has finished. Returns False on timeout."""


class AsyncioScheduler:
    """
    Runs detached coroutines on a private event loop in a daemon thread.

    The loop is started lazily on first use, so work can be spawned from plain
    threads and from code already running inside another event loop. asyncio has
    no task priorities; the hint is carried on the task name.

    Notes
    -----
    ``join()`` must not be called from work running on this scheduler.

    Usage example
    -------------
        scheduler = AsyncioScheduler()
        scheduler.spawn(lambda: do_io(), priority=TaskPriority.BACKGROUND)
        scheduler.join(timeout=5)
    """

    def __init__(self, *, name: str = "journalist-scheduler") -> None:
        self._name = name
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._pending: Set[concurrent.futures.Future] = set()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None or self._loop.is_closed():
                loop = asyncio.new_event_loop()
                started = threading.Event()

                def _run() -> None:
                    asyncio.set_event_loop(loop)
                    loop.call_soon(started.set)
                    loop.run_forever()

                thread = threading.Thread(target=_run, name=self._name, daemon=True)
                thread.start()
                started.wait()
                self._loop = loop
                self._thread = thread
            return self._loop

    def spawn(self, work: Work, *, priority: Optional[TaskPriority] = None) -> concurrent.futures.Future:
        loop = self._ensure_loop()
        task_name = "journalist" if priority is None else f"journalist-{priority.value}"

        async def _runner() -> None:
            task = asyncio.current_task()
            if task is not None:
                task.set_name(task_name)
            await work()

        future = asyncio.run_coroutine_threadsafe(_runner(), loop)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            _log.error("Detached work failed: %s (%s)", exc, type(exc).__name__, exc_info=exc)

    def join(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        # Spawned work may spawn more work; keep waiting until nothing is pending.
        while True:
            with self._lock:
                pending = set(self._pending)
            if not pending:
                return True
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            done, not_done = concurrent.futures.wait(pending, timeout=remaining)
            if not_done:
                return False
            with self._lock:
                self._pending.difference_update(done)

    def close(self) -> None:
        """Stop the loop thread. Pending work is abandoned."""
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join()
        loop.close()
