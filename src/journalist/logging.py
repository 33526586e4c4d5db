from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from rich.logging import RichHandler

from .config import JournalConfig
from .types import Report


@dataclass
class JsonlReportSink:
    """
    Additional reporter that appends each report as one JSON line.

    Each line is ``Report.to_dict()`` plus ``run_id``. Suitable as the
    journal's external sink; safe to call from any thread.

    Usage example
    -------------
        sink = JsonlReportSink(path=Path("logs/reports_abc.jsonl"), run_id="abc")
        journal.set_additional_reporter(sink)
    """
    path: Path
    run_id: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __call__(self, report: Report) -> None:
        payload: dict[str, Any] = report.to_dict()
        if self.run_id is not None:
            payload["run_id"] = self.run_id

        line = json.dumps(payload, ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")


class _JournalContextFilter(logging.Filter):
    def __init__(self, *, subsystem: str, category: str, run_id: str) -> None:
        super().__init__()
        self._subsystem = subsystem
        self._category = category
        self._run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        # Ensure tags exist for the file formatter
        for name, value in (
            ("subsystem", self._subsystem),
            ("category", self._category),
            ("run_id", self._run_id),
            ("report_level", "-"),
        ):
            if not hasattr(record, name):
                setattr(record, name, value)
        return True


def configure_logging(*, cfg: JournalConfig, run_id: Optional[str] = None) -> logging.Logger:
    """
    Configure the "<subsystem>.<category>" logger the journal emits reports on.

    Console output goes through Rich; a plain file log is added when
    ``cfg.log_dir`` is set. Calling this again replaces the handlers.

    Returns
    -------
    logger
        The configured logger.

    Usage example
    -------------
        logger = configure_logging(cfg=cfg)
        journal = Journal(logger=logger)
    """
    run_id = run_id or cfg.resolved_run_id()

    logger = logging.getLogger(cfg.logger_name)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.filters.clear()
    logger.propagate = False

    logger.addFilter(_JournalContextFilter(subsystem=cfg.subsystem, category=cfg.category, run_id=run_id))

    console_handler = RichHandler(show_path=False, markup=False)
    console_handler.setLevel(cfg.console_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    if cfg.log_dir is not None:
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(cfg.log_dir / f"journal_{run_id}.log", encoding="utf-8")
        file_handler.setLevel(cfg.file_level)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)sZ | run=%(run_id)s | %(subsystem)s/%(category)s | %(levelname)s"
                " | level=%(report_level)s | %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    logger.debug("Logging configured (run_id=%s, logger=%s, log_dir=%s)", run_id, cfg.logger_name, cfg.log_dir)
    return logger
