from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Callable, Optional, TypeVar

from rich.console import Console

from .config import ConfigError, JournalConfig
from .logging import JsonlReportSink, configure_logging
from .scheduler import AsyncioScheduler, Scheduler
from .types import Level, Report, is_unreported

T = TypeVar("T")

AdditionalReporter = Callable[[Report], None]

_UNSET: Any = object()


class Journal:
    """
    Serialized owner of report history and journal configuration.

    All state lives behind a single worker thread: every read and write is a
    task submitted to it and run one at a time, so each ``record`` call is
    atomic end-to-end relative to every other call. Non-blocking hand-offs
    (``submit``, ``arecord`` and the helpers built on them) are always queued,
    so a sink that reports its own failure is recorded after the report it is
    handling. The one exception is a *blocking* call (``record``, ``reports``,
    ``configure``...) made from the worker itself: it runs inline, nested in
    the current step, since queueing it would deadlock.

    Design notes
    ------------
    - ``record`` is the only mutator of history.
    - The additional reporter is called before the report is appended and
      before trimming, so it sees reports that are evicted immediately.
    - Exceptions from the additional reporter are logged and swallowed; they
      never prevent the triggering report from being recorded.

    Usage example
    -------------
        journal = Journal(max_reports_tracked=50)
        journal.record("app.py", 10, "load", ValueError("bad"), note="loading settings")
        for rep in journal.reports():
            print(rep.description)
    """

    def __init__(
        self,
        *,
        max_reports_tracked: Optional[int] = 100,
        print_reports: bool = True,
        logger: Optional[logging.Logger] = None,
        scheduler: Optional[Scheduler] = None,
        additional_reporter: Optional[AdditionalReporter] = None,
    ) -> None:
        if max_reports_tracked is not None and max_reports_tracked < 0:
            raise ConfigError(f"max_reports_tracked must be non-negative, got {max_reports_tracked}")
        self._max_reports_tracked = max_reports_tracked
        self._print_reports = print_reports
        self._additional_reporter = additional_reporter
        self._history: list[Report] = []

        self.logger = logger if logger is not None else logging.getLogger("journalist.reports")
        self.scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()

        self._local = threading.local()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="journalist",
            initializer=self._mark_worker,
        )

    @classmethod
    def from_config(cls, cfg: JournalConfig, *, scheduler: Optional[Scheduler] = None) -> "Journal":
        """
        Build a journal with a configured logger and, if enabled, a JSONL sink.

        Usage example
        -------------
            journal = Journal.from_config(JournalConfig.from_env())
        """
        run_id = cfg.resolved_run_id()
        logger = configure_logging(cfg=cfg, run_id=run_id)
        sink: Optional[AdditionalReporter] = None
        if cfg.write_jsonl and cfg.log_dir is not None:
            sink = JsonlReportSink(path=cfg.log_dir / f"reports_{run_id}.jsonl", run_id=run_id)
        return cls(
            max_reports_tracked=cfg.max_reports_tracked,
            print_reports=cfg.print_reports,
            logger=logger,
            scheduler=scheduler,
            additional_reporter=sink,
        )

    # ------------------------------------------------------------------
    # Serialized context
    # ------------------------------------------------------------------

    def _mark_worker(self) -> None:
        self._local.on_worker = True

    def _on_worker(self) -> bool:
        return getattr(self._local, "on_worker", False)

    def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if self._on_worker():
            return fn(*args, **kwargs)
        return self._executor.submit(fn, *args, **kwargs).result()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _record(
        self,
        file: str,
        line: int,
        function: str,
        error: BaseException,
        note: Optional[str],
        level: Level,
    ) -> Optional[Report]:
        if is_unreported(error):
            return None

        report = Report(file=file, line=line, function=function, error=error, note=note, level=level)

        if self._additional_reporter is not None:
            try:
                self._additional_reporter(report)
            except Exception as exc:
                self.logger.warning(
                    "Additional reporter failed for report from %s: %s (%s)",
                    function,
                    str(exc),
                    type(exc).__name__,
                    exc_info=exc,
                )

        self._history.append(report)
        self._trim()

        if self._print_reports:
            self.logger.error(report.description, extra={"report_level": level.value})
        return report

    def _trim(self) -> None:
        limit = self._max_reports_tracked
        if limit is None:
            return
        while len(self._history) > limit:
            self._history.pop(0)

    def record(
        self,
        file: str,
        line: int,
        function: str,
        error: BaseException,
        note: Optional[str] = None,
        *,
        level: Level = Level.LOGGED_DEV,
    ) -> Optional[Report]:
        """
        Record a failure and wait until it has been applied.

        Returns
        -------
        report
            The stored report, or None when ``error`` is an ``UnreportedError``.
        """
        return self._call(self._record, file, line, function, error, note, level)

    def submit(
        self,
        file: str,
        line: int,
        function: str,
        error: BaseException,
        note: Optional[str] = None,
        *,
        level: Level = Level.LOGGED_DEV,
    ) -> "concurrent.futures.Future[Optional[Report]]":
        """Hand a failure to the journal without waiting for it to be recorded."""
        return self._executor.submit(self._record, file, line, function, error, note, level)

    async def arecord(
        self,
        file: str,
        line: int,
        function: str,
        error: BaseException,
        note: Optional[str] = None,
        *,
        level: Level = Level.LOGGED_DEV,
    ) -> Optional[Report]:
        """Record a failure from async code; returns once the report is stored."""
        return await asyncio.wrap_future(self.submit(file, line, function, error, note, level=level))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_additional_reporter(self, reporter: Optional[AdditionalReporter]) -> None:
        """Replace the external sink. Passing None removes it."""

        def _set() -> None:
            self._additional_reporter = reporter

        self._call(_set)

    def configure(self, *, max_reports_tracked: Any = _UNSET, print_reports: Any = _UNSET) -> None:
        """
        Change journal settings. Omitted arguments are left as they are.

        Lowering ``max_reports_tracked`` trims the history immediately.
        """
        if max_reports_tracked is not _UNSET and max_reports_tracked is not None and max_reports_tracked < 0:
            raise ConfigError(f"max_reports_tracked must be non-negative, got {max_reports_tracked}")

        def _apply() -> None:
            if max_reports_tracked is not _UNSET:
                self._max_reports_tracked = max_reports_tracked
                self._trim()
            if print_reports is not _UNSET:
                self._print_reports = bool(print_reports)

        self._call(_apply)

    @property
    def max_reports_tracked(self) -> Optional[int]:
        return self._call(lambda: self._max_reports_tracked)

    @property
    def print_reports(self) -> bool:
        return self._call(lambda: self._print_reports)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def reports(self) -> list[Report]:
        """Snapshot of the history, oldest first."""
        return self._call(lambda: list(self._history))

    def flush(self) -> None:
        """Block until every hand-off submitted before this call has been applied."""
        self._call(lambda: None)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for detached work on the scheduler, then flush. Returns False on timeout."""
        finished = self.scheduler.join(timeout)
        self.flush()
        return finished

    def render_summary(self) -> str:
        """Render a human-readable listing of the retained reports."""
        history = self.reports()
        limit = self.max_reports_tracked
        bound = "unbounded" if limit is None else str(limit)

        lines: list[str] = []
        lines.append(f"Journal summary (reports={len(history)}, max={bound})")
        if not history:
            return "\n".join(lines)

        lines.append("")
        for rep in history:
            lines.append(f"[{rep.timestamp.isoformat(timespec='seconds')}] {rep.level.value}")
            lines.extend(f"  {text}" for text in rep.description.splitlines())
        return "\n".join(lines)

    def print_summary(self, console: Optional[Console] = None) -> None:
        """
        Print the summary to the console via Rich.

        Usage example
        -------------
            journal.print_summary()
        """
        (console or Console()).print(self.render_summary(), markup=False, highlight=False)


_instance: Optional[Journal] = None
_instance_lock = threading.Lock()


def get_journal() -> Journal:
    """
    Return the process-wide journal, creating it on first use.

    The default instance is built from ``JournalConfig.from_env()``.

    Usage example
    -------------
        get_journal().record(__file__, 12, "main", exc)
    """
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = Journal.from_config(JournalConfig.from_env())
    return _instance


def install_journal(journal: Journal) -> Journal:
    """Make ``journal`` the process-wide instance returned by ``get_journal()``."""
    global _instance
    with _instance_lock:
        _instance = journal
    return journal
