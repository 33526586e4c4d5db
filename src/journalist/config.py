from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional
import os
import uuid

import yaml


class ConfigError(ValueError):
    """Raised when journal configuration is missing or invalid."""


_UNBOUNDED = ("none", "unbounded", "null", "")


def _parse_bound(raw: Any) -> Optional[int]:
    """Parse a history bound; ``None`` / "none" / "unbounded" mean no bound."""
    if raw is None:
        return None
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _UNBOUNDED:
            return None
        raw = text
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"max_reports_tracked must be an integer or 'unbounded', got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"max_reports_tracked must be non-negative, got {value}")
    return value


def _parse_flag(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() not in ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class JournalConfig:
    """
    Configuration for the journal and its logging backend.

    Parameters
    ----------
    max_reports_tracked
        Upper bound on retained reports. None keeps every report.
    print_reports
        If True, every new report is also emitted through the logger.
    subsystem, category
        Tags for the logging backend; the logger is named "<subsystem>.<category>".
    console_level
        Logging level for console output.
    file_level
        Logging level for file output.
    log_dir
        Directory for the plain-text log file and JSONL report file. None disables both files.
    write_jsonl
        If True (and log_dir is set), every report is also appended to <log_dir>/reports_<run_id>.jsonl.
    run_id
        Identifier used in log file names. If "auto", a UUID4 prefix is generated.
    env_prefix
        Prefix for environment-variable overrides, e.g. "JOURNALIST_".

    Usage example
    -------------
        cfg = JournalConfig(max_reports_tracked=500, log_dir=Path("logs"))
    """

    max_reports_tracked: Optional[int] = 100
    print_reports: bool = True

    subsystem: str = "journalist"
    category: str = "reports"

    console_level: int = 20  # logging.INFO
    file_level: int = 10  # logging.DEBUG

    log_dir: Optional[Path] = None
    write_jsonl: bool = False
    run_id: str = "auto"

    env_prefix: str = field(default="", repr=False)

    def __post_init__(self) -> None:
        if self.max_reports_tracked is not None and self.max_reports_tracked < 0:
            raise ConfigError(f"max_reports_tracked must be non-negative, got {self.max_reports_tracked}")

    @property
    def logger_name(self) -> str:
        return f"{self.subsystem}.{self.category}"

    def resolved_run_id(self) -> str:
        """Return a non-auto run id."""
        if self.run_id != "auto":
            return self.run_id
        return uuid.uuid4().hex[:10]

    @classmethod
    def from_env(cls, *, default: Optional["JournalConfig"] = None) -> "JournalConfig":
        """
        Create config from environment variables.

        Supported variables (prefix controlled by env_prefix on `default`):
        - <PFX>MAX_REPORTS: integer, or "none" / "unbounded"
        - <PFX>PRINT_REPORTS: "1"/"0"
        - <PFX>LOG_DIR: path
        - <PFX>WRITE_JSONL: "1"/"0"

        Invalid values fall back to the value on `default`.

        Usage example
        -------------
            cfg = JournalConfig.from_env(default=JournalConfig(env_prefix="JOURNALIST_"))
        """
        base = default if default is not None else cls()
        pfx = base.env_prefix

        max_reports = base.max_reports_tracked
        max_reports_raw = os.getenv(f"{pfx}MAX_REPORTS")
        if max_reports_raw is not None:
            try:
                max_reports = _parse_bound(max_reports_raw)
            except ConfigError:
                max_reports = base.max_reports_tracked

        print_raw = os.getenv(f"{pfx}PRINT_REPORTS")
        print_reports = base.print_reports if print_raw is None else _parse_flag(print_raw)

        log_dir_raw = os.getenv(f"{pfx}LOG_DIR", "").strip()
        log_dir = Path(log_dir_raw) if log_dir_raw else base.log_dir

        jsonl_raw = os.getenv(f"{pfx}WRITE_JSONL")
        write_jsonl = base.write_jsonl if jsonl_raw is None else _parse_flag(jsonl_raw)

        return cls(
            max_reports_tracked=max_reports,
            print_reports=print_reports,
            subsystem=base.subsystem,
            category=base.category,
            console_level=base.console_level,
            file_level=base.file_level,
            log_dir=log_dir,
            write_jsonl=write_jsonl,
            run_id=base.run_id,
            env_prefix=pfx,
        )


def load_config(path: Path, *, default: Optional[JournalConfig] = None) -> JournalConfig:
    """
    Load a JournalConfig from a YAML file.

    Keys may sit at the top level or under a ``journal:`` section. Unknown keys
    are ignored.

    Usage example
    -------------
        cfg = load_config(Path("journal.yaml"))
    """
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a YAML mapping")
    section = data.get("journal", data)
    if not isinstance(section, dict):
        raise ConfigError(f"'journal' section in {path} must be a YAML mapping")

    base = default if default is not None else JournalConfig()
    values: dict[str, Any] = {}
    if "max_reports_tracked" in section:
        values["max_reports_tracked"] = _parse_bound(section["max_reports_tracked"])
    for key in ("print_reports", "write_jsonl"):
        if key in section:
            values[key] = _parse_flag(section[key])
    for key in ("subsystem", "category", "run_id"):
        if key in section:
            values[key] = str(section[key])
    for key in ("console_level", "file_level"):
        if key in section:
            try:
                values[key] = int(section[key])
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{key} must be an integer logging level, got {section[key]!r}") from exc
    if section.get("log_dir"):
        values["log_dir"] = Path(str(section["log_dir"]))

    return replace(base, **values)
