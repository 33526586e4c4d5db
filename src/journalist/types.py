from __future__ import annotations

import os
import sys
import traceback as _traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import CodeType
from typing import Any, Callable, Optional, Union

NoteArg = Union[str, Callable[[], str], None]


class Level(str, Enum):
    """Intended visibility of a failure. Stored on each report; never gates recording."""
    IGNORED = "ignored"
    LOGGED_DEV = "logged_dev"
    LOGGED_USER = "logged_user"
    ALERT_DEV = "alert_dev"
    ALERT_USER = "alert_user"


class UnreportedError(Exception):
    """
    Sentinel failure meaning "already handled elsewhere, do not journal".

    Raising it (or a subclass) from wrapped work still stops that work, but the
    journal drops it silently: no history entry, no sink call, no log line.

    Usage example
    -------------
        if not user_confirmed:
            raise UnreportedError()
    """


def is_unreported(error: BaseException) -> bool:
    return isinstance(error, UnreportedError)


def describe_error(error: BaseException) -> str:
    """Human-readable ``ExcType: message`` (just ``ExcType`` for an empty message)."""
    message = str(error)
    if message:
        return f"{type(error).__name__}: {message}"
    return type(error).__name__


class CallSite:
    """
    File / line / function of the code that invoked a combinator.

    The caller's code object and current line are read when the combinator is
    entered; the strings are only resolved when a failure is actually recorded.
    Each field can be overridden with a zero-argument thunk.

    Usage example
    -------------
        site = CallSite.capture(depth=1)
        ...
        file, line, function = site.resolve()
    """

    __slots__ = ("_code", "_lineno", "_file", "_line", "_function")

    def __init__(
        self,
        code: Optional[CodeType] = None,
        lineno: int = 0,
        *,
        file: Optional[Callable[[], str]] = None,
        line: Optional[Callable[[], int]] = None,
        function: Optional[Callable[[], str]] = None,
    ) -> None:
        self._code = code
        self._lineno = lineno
        self._file = file
        self._line = line
        self._function = function

    @classmethod
    def capture(
        cls,
        depth: int = 1,
        *,
        file: Optional[Callable[[], str]] = None,
        line: Optional[Callable[[], int]] = None,
        function: Optional[Callable[[], str]] = None,
    ) -> "CallSite":
        """Capture the frame ``depth`` levels above the caller of ``capture``."""
        frame = sys._getframe(depth + 1)
        return cls(frame.f_code, frame.f_lineno, file=file, line=line, function=function)

    def resolve(self) -> tuple[str, int, str]:
        file = self._file() if self._file is not None else (self._code.co_filename if self._code else "<unknown>")
        line = self._line() if self._line is not None else self._lineno
        function = self._function() if self._function is not None else (self._code.co_name if self._code else "<unknown>")
        return file, int(line), function


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Report:
    """
    Immutable snapshot of one failure and where it happened.

    Everything derived from the exception (type, message, traceback, rendered
    description) is computed once at construction, so a report stays faithful
    even if the journal configuration changes afterwards.

    Parameters
    ----------
    file, line, function
        Call site of the combinator (or explicit ``record`` arguments).
    error
        The causing exception.
    note
        Optional caller-supplied context.
    level
        Visibility hint carried for downstream consumers.
    timestamp
        UTC time the report was built.

    Usage example
    -------------
        rep = Report(file="app.py", line=12, function="load", error=ValueError("bad"))
        print(rep.description)
    """
    file: str
    line: int
    function: str
    error: BaseException
    note: Optional[str] = None
    level: Level = Level.LOGGED_DEV
    timestamp: datetime = field(default_factory=_utc_now)

    exc_type: str = field(init=False, repr=False)
    message: str = field(init=False, repr=False)
    traceback: str = field(init=False, repr=False)
    description: str = field(init=False, repr=False)

    def __post_init__(self) -> None:
        err = self.error
        tb = "".join(_traceback.format_exception(type(err), err, err.__traceback__))
        object.__setattr__(self, "exc_type", type(err).__name__)
        object.__setattr__(self, "message", str(err))
        object.__setattr__(self, "traceback", tb)
        object.__setattr__(self, "description", self._render())

    def _render(self) -> str:
        lines = [f"{self.function} @ {os.path.basename(self.file)}:{self.line}"]
        if self.note:
            lines.append(f"  note: {self.note}")
        lines.append(f"  error: {describe_error(self.error)}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.description

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready mapping of the report (the exception is flattened)."""
        return {
            "time_utc": self.timestamp.isoformat(),
            "file": self.file,
            "line": self.line,
            "function": self.function,
            "level": self.level.value,
            "note": self.note,
            "exc_type": self.exc_type,
            "exc_msg": self.message,
        }


def resolve_note(note: NoteArg) -> Optional[str]:
    """Evaluate a note argument; only called on the failure path."""
    if note is None or isinstance(note, str):
        return note
    try:
        return note()
    except Exception as exc:
        return f"<note unavailable: {describe_error(exc)}>"
