"""Log sinks and the aggregate build log."""
from __future__ import annotations

from pathlib import Path
from typing import IO, Protocol, runtime_checkable
import sys

BANNER_RULE = "#" * 50


@runtime_checkable
class LogSink(Protocol):
    """Message sink used by the build engine."""

    def info(self, message: str) -> None:
        ...

    def warn(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...

    def debug(self, message: str) -> None:
        ...


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < warn < info < debug
    Default: 'info'
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "warn": 2,
        "info": 3,
        "debug": 4,
    }

    def __init__(self, level: str = "info", *, stream: IO[str] | None = None, error_stream: IO[str] | None = None):
        self.level_name = level
        self.level = self.LEVELS.get(level, self.LEVELS["info"])
        self._stream = stream
        self._error_stream = error_stream

    def _out(self) -> IO[str]:
        return self._stream or sys.stdout

    def _err(self) -> IO[str]:
        return self._error_stream or sys.stderr

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            print(f"[INFO] {message}", file=self._out())

    def warn(self, message: str) -> None:
        if self.level >= self.LEVELS["warn"]:
            print(f"[WARN] {message}", file=self._err())

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"[ERROR] {message}", file=self._err())

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            print(f"[DEBUG] {message}", file=self._out())


class AggregateLog:
    """Append-only build log collecting the logs of every step.

    Each step gets a banner naming its position in the pipeline; the step's own
    log file is appended below it and then removed.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._handle: IO[str] | None = None

    def __enter__(self) -> "AggregateLog":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("a", encoding="utf-8")
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def _write(self, text: str) -> None:
        if self._handle is None:
            raise RuntimeError(f"Build log {self.path} is not open")
        self._handle.write(text)

    def banner(self, index: int, count: int, step_id: str) -> None:
        self._write(f"{BANNER_RULE}\n# Step {index}/{count} {step_id}\n{BANNER_RULE}\n")

    def append_file(self, step_log: Path) -> bool:
        """Copy *step_log* into the build log and delete it; ``False`` if absent."""
        if not step_log.is_file():
            return False
        self._write(step_log.read_text(encoding="utf-8", errors="replace"))
        if self._handle is not None:
            self._handle.flush()
        step_log.unlink()
        return True


__all__ = ["AggregateLog", "BANNER_RULE", "Console", "LogSink"]
