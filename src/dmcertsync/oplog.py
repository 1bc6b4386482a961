"""Per-run operation log.

Every component receives the same `OperationLog` instance. Entries are appended to a
plain text file (one line per event), optionally echoed to the console through rich,
and kept in memory for the run report. Logging is best-effort: `record` never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

DEFAULT_LOG_DIR = "~/.dmcertsync/logs"

FILE_FORMAT = "%(asctime)s %(levelname)s step=%(step)d %(message)s"
CONSOLE_FORMAT = "step=%(step)d %(message)s"


class Step(IntEnum):
    """Ordinal of the pipeline step an entry belongs to."""

    DISCOVER = 1
    RESOLVE = 2
    COMPARE = 3
    CORRECT = 4
    REPORT = 5


class Level(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


_LOGGING_LEVELS = {
    Level.INFO: logging.INFO,
    Level.WARNING: logging.WARNING,
    Level.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    timestamp: str
    level: Level
    step: int
    message: str


class _UtcFormatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
            timespec="seconds"
        )


class _BestEffortFileHandler(logging.FileHandler):
    def __init__(self, path: Path, oplog: OperationLog) -> None:
        super().__init__(path, mode="a", encoding="utf-8", delay=True)
        self._oplog = oplog

    def handleError(self, record: logging.LogRecord) -> None:
        self._oplog.failures += 1


def log_file_path(log_dir: Path, started_at: datetime) -> Path:
    stamp = started_at.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return log_dir / f"dmcertsync-{stamp}.log"


class OperationLog:
    """Append-only, timestamped, leveled event sink for a single run."""

    def __init__(
        self,
        path: Path | None = None,
        console: Console | None = None,
        name: str = "dmcertsync.run",
    ) -> None:
        self.path = path
        self.entries: list[LogEntry] = []
        self.failures = 0
        # Not registered with logging.getLogger; nothing outlives the run.
        self._logger = logging.Logger(name, level=logging.DEBUG)
        if path is not None:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                self.failures += 1
            file_handler = _BestEffortFileHandler(path, self)
            file_handler.setFormatter(_UtcFormatter(FILE_FORMAT))
            self._logger.addHandler(file_handler)
        if console is not None:
            console_handler = RichHandler(
                console=console, show_path=False, show_time=False, markup=False
            )
            console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
            self._logger.addHandler(console_handler)
        if not self._logger.handlers:
            self._logger.addHandler(logging.NullHandler())

    @classmethod
    def for_run(
        cls, log_dir: Path, started_at: datetime, console: Console | None = None
    ) -> OperationLog:
        return cls(log_file_path(log_dir, started_at), console=console)

    def record(self, level: Level, step: int, message: str) -> None:
        entry = LogEntry(
            timestamp=datetime.now(tz=timezone.utc).isoformat(timespec="seconds"),
            level=level,
            step=int(step),
            message=message,
        )
        self.entries.append(entry)
        try:
            self._logger.log(_LOGGING_LEVELS[level], message, extra={"step": entry.step})
        except Exception:
            # Opening the file happens outside the handler's own error guard.
            self.failures += 1

    def info(self, step: int, message: str) -> None:
        self.record(Level.INFO, step, message)

    def warning(self, step: int, message: str) -> None:
        self.record(Level.WARNING, step, message)

    def error(self, step: int, message: str) -> None:
        self.record(Level.ERROR, step, message)

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            try:
                handler.close()
            except OSError:
                self.failures += 1
            self._logger.removeHandler(handler)
