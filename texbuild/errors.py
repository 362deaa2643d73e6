"""Exception hierarchy for texbuild."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable


class BuildError(RuntimeError):
    """Base class for all build failures."""


class ConfigurationError(BuildError, ValueError):
    """Raised for invalid configuration detected before any tool runs."""


class InvalidFormatError(ConfigurationError):
    def __init__(self, output_format: str | None):
        if not output_format:
            message = "No output format specified. Supported values are: dvi, pdf, ps."
        else:
            message = f"Invalid output format '{output_format}' specified. Supported values are: dvi, pdf, ps."
        super().__init__(message)
        self.output_format = output_format


class UnknownStepError(ConfigurationError):
    def __init__(self, step_id: str, origin: str = "build_steps"):
        super().__init__(
            f"Step '{step_id}' defined in '{origin}' is unknown. "
            "Consider providing the definition of the step in the 'steps' configuration."
        )
        self.step_id = step_id
        self.origin = origin


class ExecutableNotFoundError(BuildError):
    def __init__(self, step_ids: Iterable[str]):
        self.step_ids = list(step_ids)
        joined = ", ".join(self.step_ids)
        super().__init__(f"The executable of the following steps could not be found: {joined}")


class ResolutionError(BuildError):
    def __init__(self, coordinates: str, reason: str | None = None):
        message = f"Could not resolve dependency {coordinates}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.coordinates = coordinates


class ExtractionError(BuildError):
    def __init__(self, path: Path, reason: str | None = None):
        message = f"Could not extract archive {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.path = path


class MergeIOError(BuildError):
    def __init__(self, path: Path, reason: str | None = None):
        message = f"Could not merge resource {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.path = path


class StepExecutionFailure(BuildError):
    """A step failed in a way the exit-code policy does not tolerate.

    ``exit_code`` is ``None`` when the process could not be started or when the
    pipeline finished without producing its output file.
    """

    def __init__(self, step_id: str, exit_code: int | None = None, message: str | None = None):
        if message is None:
            if exit_code is None:
                message = f"Execution of step {step_id} failed."
            else:
                message = f"Execution of step {step_id} failed. Process finished with exit code {exit_code}."
        super().__init__(message)
        self.step_id = step_id
        self.exit_code = exit_code


__all__ = [
    "BuildError",
    "ConfigurationError",
    "ExecutableNotFoundError",
    "ExtractionError",
    "InvalidFormatError",
    "MergeIOError",
    "ResolutionError",
    "StepExecutionFailure",
    "UnknownStepError",
]
