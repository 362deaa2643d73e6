"""Locating the executables of build steps."""
from __future__ import annotations

from pathlib import Path
from typing import Mapping
import os

from .steps import StepDefinition

TEXBIN_VARIABLE = "TEXBIN"


def current_os_family() -> str:
    return "windows" if os.name == "nt" else "posix"


def executable_name(step: StepDefinition, os_family: str | None = None) -> str:
    return step.executable_name(os_family or current_os_family())


def resolve_executable(
    bin_directory: str | Path | None,
    name: str,
    *,
    environ: Mapping[str, str] | None = None,
) -> Path | None:
    """Return the first existing ``name`` in the search order, or ``None``.

    The configured *bin_directory* is searched first, then the directory named
    by the ``TEXBIN`` environment variable and finally each ``PATH`` entry in
    listed order.
    """
    env = os.environ if environ is None else environ

    candidates: list[Path] = []
    if bin_directory:
        candidates.append(Path(bin_directory).expanduser())
    override = env.get(TEXBIN_VARIABLE)
    if override:
        candidates.append(Path(override).expanduser())
    for entry in env.get("PATH", "").split(os.pathsep):
        if entry:
            candidates.append(Path(entry))

    for directory in candidates:
        executable = directory / name
        if executable.exists():
            return executable
    return None


__all__ = [
    "TEXBIN_VARIABLE",
    "current_os_family",
    "executable_name",
    "resolve_executable",
]
