from __future__ import annotations

import asyncio
import io
import json
import logging
import threading
from pathlib import Path

import pytest
from rich.console import Console

from journalist import journal as journal_module
from journalist.config import ConfigError, JournalConfig
from journalist.journal import Journal, get_journal, install_journal
from journalist.types import Level, Report, UnreportedError


def _make_journal(**kwargs) -> Journal:
    kwargs.setdefault("print_reports", False)
    return Journal(**kwargs)


def _notes(journal: Journal) -> list:
    return [rep.note for rep in journal.reports()]


def test_record_appends_report() -> None:
    journal = _make_journal()
    err = ValueError("bad")

    rep = journal.record("app.py", 10, "load", err, "loading", level=Level.LOGGED_USER)

    assert isinstance(rep, Report)
    assert journal.reports() == [rep]
    assert rep.error is err
    assert rep.file == "app.py"
    assert rep.line == 10
    assert rep.function == "load"
    assert rep.note == "loading"
    assert rep.level is Level.LOGGED_USER


def test_history_is_bounded_and_keeps_most_recent() -> None:
    journal = _make_journal(max_reports_tracked=3)

    for i in range(10):
        journal.record("app.py", i, "f", RuntimeError(str(i)), str(i))
        assert len(journal.reports()) <= 3

    assert _notes(journal) == ["7", "8", "9"]


def test_unbounded_history_keeps_everything() -> None:
    journal = _make_journal(max_reports_tracked=None)
    for i in range(250):
        journal.record("app.py", i, "f", RuntimeError(str(i)))
    assert len(journal.reports()) == 250


def test_bound_and_sink_scenario() -> None:
    seen: list = []
    journal = _make_journal(max_reports_tracked=2, additional_reporter=lambda rep: seen.append(rep.note))

    for note in ("a", "b", "c"):
        journal.record("app.py", 1, "f", ValueError(note), note)

    assert _notes(journal) == ["b", "c"]
    assert seen == ["a", "b", "c"]


def test_sink_sees_reports_evicted_immediately() -> None:
    seen: list = []
    journal = _make_journal(max_reports_tracked=1, additional_reporter=seen.append)

    first = journal.record("app.py", 1, "f", ValueError("1"))
    second = journal.record("app.py", 2, "f", ValueError("2"))

    assert seen == [first, second]
    assert journal.reports() == [second]


def test_zero_bound_keeps_nothing_but_still_forwards() -> None:
    seen: list = []
    journal = _make_journal(max_reports_tracked=0, additional_reporter=seen.append)

    journal.record("app.py", 1, "f", ValueError("x"))

    assert journal.reports() == []
    assert len(seen) == 1


def test_unreported_error_is_a_silent_no_op(caplog) -> None:
    seen: list = []
    logger = logging.getLogger("test.journal.unreported")
    journal = Journal(additional_reporter=seen.append, logger=logger, print_reports=True)
    caplog.set_level(logging.DEBUG, logger=logger.name)

    assert journal.record("app.py", 1, "f", UnreportedError()) is None

    assert journal.reports() == []
    assert seen == []
    assert [r for r in caplog.records if r.name == logger.name] == []


def test_failing_sink_does_not_block_recording(caplog) -> None:
    logger = logging.getLogger("test.journal.sink")

    def broken_sink(rep: Report) -> None:
        raise ConnectionError("sink offline")

    journal = Journal(additional_reporter=broken_sink, logger=logger, print_reports=False)
    caplog.set_level(logging.WARNING, logger=logger.name)

    rep = journal.record("app.py", 1, "f", ValueError("x"))

    assert journal.reports() == [rep]
    assert "Additional reporter failed" in caplog.text
    assert "sink offline" in caplog.text


def test_set_additional_reporter_replaces_and_removes() -> None:
    first: list = []
    second: list = []
    journal = _make_journal(additional_reporter=first.append)

    journal.record("app.py", 1, "f", ValueError("1"))
    journal.set_additional_reporter(second.append)
    journal.record("app.py", 2, "f", ValueError("2"))
    journal.set_additional_reporter(None)
    journal.record("app.py", 3, "f", ValueError("3"))

    assert [r.line for r in first] == [1]
    assert [r.line for r in second] == [2]
    assert len(journal.reports()) == 3


def test_print_reports_logs_description(caplog) -> None:
    logger = logging.getLogger("test.journal.print")
    journal = Journal(logger=logger, print_reports=True)
    caplog.set_level(logging.ERROR, logger=logger.name)

    rep = journal.record("/src/app.py", 12, "load", ValueError("bad"), "reading", level=Level.ALERT_DEV)

    records = [r for r in caplog.records if r.name == logger.name]
    assert len(records) == 1
    record = records[0]
    assert record.levelno == logging.ERROR
    assert record.getMessage() == rep.description
    assert record.report_level == "alert_dev"


def test_print_reports_disabled_is_silent(caplog) -> None:
    logger = logging.getLogger("test.journal.quiet")
    journal = Journal(logger=logger, print_reports=False)
    caplog.set_level(logging.DEBUG, logger=logger.name)

    journal.record("app.py", 1, "f", ValueError("x"))

    assert [r for r in caplog.records if r.name == logger.name] == []


def test_level_does_not_gate_recording() -> None:
    journal = _make_journal()
    for level in Level:
        journal.record("app.py", 1, "f", ValueError(level.value), level=level)
    assert [rep.level for rep in journal.reports()] == list(Level)


def test_configure_updates_settings_and_trims() -> None:
    journal = _make_journal(max_reports_tracked=None)
    for i in range(5):
        journal.record("app.py", i, "f", ValueError(str(i)), str(i))

    journal.configure(max_reports_tracked=2, print_reports=True)

    assert journal.max_reports_tracked == 2
    assert journal.print_reports is True
    assert _notes(journal) == ["3", "4"]

    journal.configure(max_reports_tracked=None)
    assert journal.max_reports_tracked is None
    assert journal.print_reports is True


def test_negative_bound_is_rejected() -> None:
    with pytest.raises(ConfigError):
        Journal(max_reports_tracked=-1)

    journal = _make_journal()
    with pytest.raises(ConfigError):
        journal.configure(max_reports_tracked=-5)
    assert journal.max_reports_tracked == 100


def test_concurrent_records_from_threads() -> None:
    journal = _make_journal(max_reports_tracked=None)
    n_threads, per_thread = 8, 50
    start = threading.Barrier(n_threads)

    def worker(t: int) -> None:
        start.wait()
        for i in range(per_thread):
            journal.record("app.py", i, "worker", RuntimeError("x"), f"{t}-{i}")

    threads = [threading.Thread(target=worker, args=(t,)) for t in range(n_threads)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    notes = _notes(journal)
    assert len(notes) == n_threads * per_thread
    assert len(set(notes)) == n_threads * per_thread

    stamps = [rep.timestamp for rep in journal.reports()]
    assert stamps == sorted(stamps)


def test_concurrent_submits_respect_bound() -> None:
    seen: list = []
    journal = _make_journal(max_reports_tracked=10, additional_reporter=seen.append)

    def worker() -> None:
        for i in range(25):
            journal.submit("app.py", i, "worker", RuntimeError("x"))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()
    journal.flush()

    assert len(seen) == 100
    assert journal.reports() == seen[-10:]


@pytest.mark.asyncio
async def test_arecord_from_many_tasks() -> None:
    journal = _make_journal(max_reports_tracked=None)

    reps = await asyncio.gather(*(journal.arecord("app.py", i, "task", ValueError(str(i))) for i in range(20)))

    assert len(journal.reports()) == 20
    assert set(reps) == set(journal.reports())


def test_sink_hand_off_is_queued_behind_current_report() -> None:
    journal = _make_journal()

    def sink(rep: Report) -> None:
        if rep.note == "primary":
            journal.submit("sink.py", 1, "sink", RuntimeError("forward failed"), "secondary")

    journal.set_additional_reporter(sink)
    journal.record("app.py", 1, "f", ValueError("x"), "primary")
    journal.flush()

    assert _notes(journal) == ["primary", "secondary"]


def test_blocking_record_from_sink_runs_inline() -> None:
    journal = _make_journal()

    def sink(rep: Report) -> None:
        if rep.note == "primary":
            nested = journal.record("sink.py", 1, "sink", RuntimeError("forward failed"), "secondary")
            assert nested is not None

    journal.set_additional_reporter(sink)
    journal.record("app.py", 1, "f", ValueError("x"), "primary")

    # nested inside the sink step, so it lands before the report being handled
    assert _notes(journal) == ["secondary", "primary"]


def test_render_summary_lists_reports() -> None:
    journal = _make_journal(max_reports_tracked=5)
    assert journal.render_summary() == "Journal summary (reports=0, max=5)"

    journal.record("app.py", 7, "load", ValueError("bad"), "settings")
    text = journal.render_summary()

    assert "reports=1" in text
    assert "load @ app.py:7" in text
    assert "note: settings" in text
    assert "ValueError: bad" in text
    assert "logged_dev" in text


def test_print_summary_writes_to_console() -> None:
    journal = _make_journal(max_reports_tracked=None)
    journal.record("app.py", 7, "load", ValueError("bad"))
    buf = io.StringIO()

    journal.print_summary(Console(file=buf, width=200))

    out = buf.getvalue()
    assert "max=unbounded" in out
    assert "ValueError: bad" in out


def test_from_config_wires_logging_and_jsonl(tmp_path: Path) -> None:
    cfg = JournalConfig(
        max_reports_tracked=4,
        category="from_config",
        log_dir=tmp_path / "logs",
        write_jsonl=True,
        run_id="testrun",
        console_level=logging.CRITICAL,
    )
    journal = Journal.from_config(cfg)

    journal.record("app.py", 3, "load", ValueError("bad"), "ctx")

    assert journal.max_reports_tracked == 4
    jsonl = (tmp_path / "logs" / "reports_testrun.jsonl").read_text(encoding="utf-8").strip().splitlines()
    assert len(jsonl) == 1
    payload = json.loads(jsonl[0])
    assert payload["run_id"] == "testrun"
    assert payload["note"] == "ctx"

    log_text = (tmp_path / "logs" / "journal_testrun.log").read_text(encoding="utf-8")
    assert "load @ app.py:3" in log_text


def test_get_journal_is_lazy_singleton(monkeypatch) -> None:
    monkeypatch.setattr(journal_module, "_instance", None)
    monkeypatch.setenv("MAX_REPORTS", "5")
    monkeypatch.setenv("PRINT_REPORTS", "0")

    first = get_journal()
    second = get_journal()

    assert first is second
    assert first.max_reports_tracked == 5
    assert first.print_reports is False


def test_install_journal_replaces_instance(monkeypatch) -> None:
    monkeypatch.setattr(journal_module, "_instance", None)
    journal = _make_journal()

    assert install_journal(journal) is journal
    assert get_journal() is journal
