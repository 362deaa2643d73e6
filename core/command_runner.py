"""Utilities for executing external commands with line-oriented output capture."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Dict, Iterable, List, Mapping, Sequence
import atexit
import os
import shlex
import signal
import subprocess
import threading

LineHandler = Callable[[str], None]

_ACTIVE_PROCESSES: set[subprocess.Popen] = set()
_ACTIVE_LOCK = threading.Lock()


def _terminate_active_processes() -> None:
    with _ACTIVE_LOCK:
        processes = list(_ACTIVE_PROCESSES)
        _ACTIVE_PROCESSES.clear()
    for process in processes:
        if process.poll() is None:
            process.kill()


atexit.register(_terminate_active_processes)


def _exit_on_signal(signum: int, frame: object) -> None:
    raise SystemExit(128 + signum)


def install_termination_handler() -> None:
    """Turn SIGTERM into :class:`SystemExit` so running children are killed on the way out.

    Signal handlers can only be installed from the main thread; elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        return
    signal.signal(signal.SIGTERM, _exit_on_signal)


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    """Raised when a checked command fails."""

    def __init__(self, result: CommandResult):
        message = (
            f"Command failed with exit code {result.returncode}: "
            f"{' '.join(map(shlex.quote, result.command))}\n"
            f"stdout: {result.stdout}\n"
            f"stderr: {result.stderr}"
        )
        super().__init__(message)
        self.result = result


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        on_stdout: LineHandler | None = None,
        on_stderr: LineHandler | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`.

    Standard output and standard error are drained by two reader threads while
    the process runs so that neither pipe can fill up and stall the child.
    Every line is handed to the matching handler (if any) as soon as it is read
    and also collected into the returned :class:`CommandResult`.

    Spawned processes are tracked until they exit and are killed when the
    interpreter shuts down or the waiting thread is interrupted.  An
    :class:`OSError` is raised unchanged when the executable cannot be started.
    """

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    @staticmethod
    def _drain(stream: IO[str], sink: List[str], handler: LineHandler | None) -> None:
        with stream:
            for line in stream:
                text = line.rstrip("\r\n")
                sink.append(text)
                if handler is not None:
                    handler(text)

    def _finalize(self, result: CommandResult, *, check: bool) -> CommandResult:
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        on_stdout: LineHandler | None = None,
        on_stderr: LineHandler | None = None,
    ) -> CommandResult:
        process = subprocess.Popen(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=self._merge_environment(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
        with _ACTIVE_LOCK:
            _ACTIVE_PROCESSES.add(process)

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []
        readers = [
            threading.Thread(target=self._drain, args=(process.stdout, stdout_lines, on_stdout), daemon=True),
            threading.Thread(target=self._drain, args=(process.stderr, stderr_lines, on_stderr), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            returncode = process.wait()
            for reader in readers:
                reader.join()
        except BaseException:
            process.kill()
            process.wait()
            raise
        finally:
            with _ACTIVE_LOCK:
                _ACTIVE_PROCESSES.discard(process)

        return self._finalize(
            CommandResult(
                command=command,
                returncode=returncode,
                stdout="\n".join(stdout_lines),
                stderr="\n".join(stderr_lines),
            ),
            check=check,
        )


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str] = field(default_factory=dict)
    note: str | None = None


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        on_stdout: LineHandler | None = None,
        on_stderr: LineHandler | None = None,
    ) -> CommandResult:
        self.commands.append(
            RecordedCommand(
                command=list(command),
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env else {},
                note=note,
            )
        )
        return CommandResult(command=command, returncode=0, stdout="", stderr="")

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            cmd = self.format_command(record.command)
            cwd = record.cwd or default_cwd
            parts: List[str] = ["[dry-run]"]
            if record.note:
                parts.append(record.note)
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(cmd)
            yield " ".join(parts)
