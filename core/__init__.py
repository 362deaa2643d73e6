"""Shared core utilities for process execution, archives and configuration."""

from .archive import ArchiveConsole, ArchiveManager
from .command_runner import (
    CommandError,
    CommandResult,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
    install_termination_handler,
)
from .config_loader import find_config_file, load_config_file, normalize_string_list

__all__ = [
    "ArchiveConsole",
    "ArchiveManager",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "install_termination_handler",
    "find_config_file",
    "load_config_file",
    "normalize_string_list",
]
