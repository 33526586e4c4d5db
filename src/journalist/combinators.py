"""
Call-site helpers that run a unit of work and journal its failure.

Every helper records where it was called from (file, line, function) at the
moment it is invoked and evaluates ``note`` only when the work fails.

| helper             | work            | on failure                               |
|--------------------|-----------------|------------------------------------------|
| spawn_report       | sync or async   | runs detached; caller never waits        |
| report / reporting | sync            | hands off to the journal, returns None   |
| report_value       | sync, value     | hands off to the journal, returns None   |
| report_async       | async, value    | awaits the record, returns None          |
| report_and_raise   | async, value    | awaits the record, re-raises the error   |
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
from types import TracebackType
from typing import Any, Awaitable, Callable, Coroutine, Optional, Type, TypeVar, Union

from .journal import Journal, get_journal
from .scheduler import TaskPriority
from .types import CallSite, Level, NoteArg, Report, resolve_note

T = TypeVar("T")

Work = Callable[[], Union[T, Awaitable[T]]]


def _journal(journal: Optional[Journal]) -> Journal:
    return journal if journal is not None else get_journal()


def _hand_off(
    journal: Journal, site: CallSite, exc: BaseException, note: NoteArg, level: Level
) -> "concurrent.futures.Future[Optional[Report]]":
    file, line, function = site.resolve()
    return journal.submit(file, line, function, exc, resolve_note(note), level=level)


async def _record_awaited(
    journal: Journal, site: CallSite, exc: BaseException, note: NoteArg, level: Level
) -> Optional[Report]:
    file, line, function = site.resolve()
    return await journal.arecord(file, line, function, exc, resolve_note(note), level=level)


async def _run(work: Work[T]) -> T:
    result = work()
    if inspect.isawaitable(result):
        return await result
    return result


def spawn_report(
    work: Work[Any],
    *,
    note: NoteArg = None,
    level: Level = Level.LOGGED_DEV,
    priority: Optional[TaskPriority] = None,
    journal: Optional[Journal] = None,
    file: Optional[Callable[[], str]] = None,
    line: Optional[Callable[[], int]] = None,
    function: Optional[Callable[[], str]] = None,
) -> None:
    """
    Run ``work`` detached on the journal's scheduler; journal it if it fails.

    Returns immediately. The caller gets no completion signal; a failure is
    recorded whenever the detached work gets to it.
    Coroutine functions run on the scheduler loop; plain callables run in its
    default thread pool, so blocking work never delays other detached reports.

    Usage example
    -------------
        spawn_report(lambda: upload(batch), note=lambda: f"batch {batch.id}",
                     priority=TaskPriority.BACKGROUND)
    """
    site = CallSite.capture(1, file=file, line=line, function=function)
    target = _journal(journal)

    async def _detached() -> None:
        try:
            if inspect.iscoroutinefunction(work):
                await work()
            else:
                # Blocking work must not hold the scheduler loop.
                result = await asyncio.get_running_loop().run_in_executor(None, work)
                if inspect.isawaitable(result):
                    await result
        except Exception as exc:
            await _record_awaited(target, site, exc, note, level)

    target.scheduler.spawn(_detached, priority=priority)


def report(
    work: Callable[[], Any],
    *,
    note: NoteArg = None,
    level: Level = Level.LOGGED_DEV,
    journal: Optional[Journal] = None,
    file: Optional[Callable[[], str]] = None,
    line: Optional[Callable[[], int]] = None,
    function: Optional[Callable[[], str]] = None,
) -> None:
    """
    Run ``work`` now; on failure hand the error to the journal and continue.

    The hand-off does not wait for the report to be stored.

    Usage example
    -------------
        report(lambda: cache.write(key, value), note="cache write")
    """
    site = CallSite.capture(1, file=file, line=line, function=function)
    try:
        work()
    except Exception as exc:
        _hand_off(_journal(journal), site, exc, note, level)


def report_value(
    work: Callable[[], T],
    *,
    note: NoteArg = None,
    level: Level = Level.LOGGED_DEV,
    journal: Optional[Journal] = None,
    file: Optional[Callable[[], str]] = None,
    line: Optional[Callable[[], int]] = None,
    function: Optional[Callable[[], str]] = None,
) -> Optional[T]:
    """
    Run ``work`` now and return its value, or None after journaling a failure.

    Usage example
    -------------
        settings = report_value(lambda: load_settings(path), note=lambda: f"path={path}")
        if settings is None:
            settings = Settings.defaults()
    """
    site = CallSite.capture(1, file=file, line=line, function=function)
    try:
        return work()
    except Exception as exc:
        _hand_off(_journal(journal), site, exc, note, level)
        return None


def report_async(
    work: Work[T],
    *,
    note: NoteArg = None,
    level: Level = Level.LOGGED_DEV,
    journal: Optional[Journal] = None,
    file: Optional[Callable[[], str]] = None,
    line: Optional[Callable[[], int]] = None,
    function: Optional[Callable[[], str]] = None,
) -> Coroutine[Any, Any, Optional[T]]:
    """
    Await ``work`` and return its value, or None once a failure has been recorded.

    Usage example
    -------------
        user = await report_async(lambda: client.fetch_user(user_id))
    """
    site = CallSite.capture(1, file=file, line=line, function=function)

    async def _guarded() -> Optional[T]:
        try:
            return await _run(work)
        except Exception as exc:
            await _record_awaited(_journal(journal), site, exc, note, level)
            return None

    return _guarded()


def report_and_raise(
    work: Work[T],
    *,
    note: NoteArg = None,
    level: Level = Level.LOGGED_DEV,
    journal: Optional[Journal] = None,
    file: Optional[Callable[[], str]] = None,
    line: Optional[Callable[[], int]] = None,
    function: Optional[Callable[[], str]] = None,
) -> Coroutine[Any, Any, T]:
    """
    Await ``work``; on failure record it, then re-raise the original exception.

    Usage example
    -------------
        try:
            order = await report_and_raise(lambda: api.place(order_req))
        except ApiError:
            ...
    """
    site = CallSite.capture(1, file=file, line=line, function=function)

    async def _guarded() -> T:
        try:
            return await _run(work)
        except Exception as exc:
            await _record_awaited(_journal(journal), site, exc, note, level)
            raise

    return _guarded()


class reporting:
    """
    Context manager form of ``report``: a failing block is journaled and suppressed.

    Usage example
    -------------
        with reporting(note="refresh thumbnails"):
            refresh_thumbnails()
    """

    def __init__(
        self,
        *,
        note: NoteArg = None,
        level: Level = Level.LOGGED_DEV,
        journal: Optional[Journal] = None,
        file: Optional[Callable[[], str]] = None,
        line: Optional[Callable[[], int]] = None,
        function: Optional[Callable[[], str]] = None,
    ) -> None:
        self._site = CallSite.capture(1, file=file, line=line, function=function)
        self._note = note
        self._level = level
        self._journal = journal

    def __enter__(self) -> "reporting":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        if exc is None or not isinstance(exc, Exception):
            return False
        _hand_off(_journal(self._journal), self._site, exc, self._note, self._level)
        return True
