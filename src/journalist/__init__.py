"""
journalist: a concurrency-safe journal of failures captured at call sites.

Key primitives
--------------
- Journal: serialized owner of the bounded report history and sink
- get_journal() / install_journal(): process-wide instance
- report(), report_value(), reporting(): wrap blocking work
- report_async(), report_and_raise(): wrap awaited work
- spawn_report(): run work detached, journal its failure
- UnreportedError: raise to stop work without journaling it
- JournalConfig / configure_logging(): configuration and logging backend
"""

from .version import __version__
from .types import CallSite, Level, Report, UnreportedError
from .config import ConfigError, JournalConfig, load_config
from .logging import JsonlReportSink, configure_logging
from .scheduler import AsyncioScheduler, Scheduler, TaskPriority
from .journal import Journal, get_journal, install_journal
from .combinators import report, report_and_raise, report_async, report_value, reporting, spawn_report

__all__ = [
    "__version__",
    "CallSite",
    "Level",
    "Report",
    "UnreportedError",
    "ConfigError",
    "JournalConfig",
    "load_config",
    "JsonlReportSink",
    "configure_logging",
    "AsyncioScheduler",
    "Scheduler",
    "TaskPriority",
    "Journal",
    "get_journal",
    "install_journal",
    "report",
    "report_and_raise",
    "report_async",
    "report_value",
    "reporting",
    "spawn_report",
]
