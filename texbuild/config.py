"""Build configuration parsing."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

import yaml

from core.config_loader import find_config_file, load_config_file, normalize_string_list

from .errors import ConfigurationError
from .pipeline import FORMAT_PDF, validate_output_format
from .steps import StepDefinition

CONFIG_FILE_STEM = "texbuild"
DEFAULT_SOURCE_DIRECTORY = "src/main/tex"
DEFAULT_REPOSITORY = "~/.m2/repository"


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"'{key}' must be a string")
    return value.strip() or None


def _bool(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be a boolean")
    return value


def _output_format(data: Mapping[str, Any]) -> str:
    if "output_format" not in data:
        return FORMAT_PDF
    value = data["output_format"]
    return validate_output_format(value.strip() if isinstance(value, str) else value)


def _optional_list(data: Mapping[str, Any], key: str) -> List[str] | None:
    if key not in data or data[key] is None:
        return None
    try:
        return normalize_string_list(data[key], field_name=key)
    except TypeError as exc:
        raise ConfigurationError(str(exc)) from exc


@dataclass(slots=True)
class BuildConfiguration:
    """Everything a single build needs to know, independent of any host tool."""

    project_dir: Path
    artifact_id: str
    version: str
    output_format: str = FORMAT_PDF
    bin_directory: str | None = None
    typeset_steps: List[str] | None = None
    build_steps: List[str] | None = None
    steps: List[StepDefinition] = field(default_factory=list)
    keep_intermediate_files: bool = False
    source_directory: str = DEFAULT_SOURCE_DIRECTORY
    index_style_file: str | None = None
    halt_on_error: bool = True
    tex_file: str | None = None
    resources: List[str] | None = None
    dependencies: List[str] = field(default_factory=list)
    repository: str = DEFAULT_REPOSITORY

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, project_dir: Path) -> "BuildConfiguration":
        allowed_sections = {"project", "latex"}
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_sections}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigurationError(f"Configuration contains unknown sections: {joined}")

        project_section = data.get("project") or {}
        latex_section = data.get("latex") or {}
        if not isinstance(project_section, Mapping) or not isinstance(latex_section, Mapping):
            raise ConfigurationError("'project' and 'latex' must be tables")

        allowed_project = {"artifact_id", "version"}
        unknown = {str(key) for key in project_section.keys() if str(key) not in allowed_project}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigurationError(f"Section 'project' contains unknown keys: {joined}")

        allowed_latex = {
            "output_format",
            "bin_directory",
            "typeset_steps",
            "build_steps",
            "steps",
            "keep_intermediate_files",
            "source_directory",
            "index_style_file",
            "halt_on_error",
            "tex_file",
            "resources",
            "dependencies",
            "repository",
        }
        unknown = {str(key) for key in latex_section.keys() if str(key) not in allowed_latex}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigurationError(f"Section 'latex' contains unknown keys: {joined}")

        steps_section = latex_section.get("steps") or {}
        if not isinstance(steps_section, Mapping):
            raise ConfigurationError("'steps' must be a table of step definitions keyed by id")
        steps = [StepDefinition.from_mapping(str(step_id), value) for step_id, value in steps_section.items()]

        artifact_id = _optional_str(project_section, "artifact_id") or project_dir.resolve().name
        version = project_section.get("version", "0.0.0")

        return cls(
            project_dir=project_dir,
            artifact_id=artifact_id,
            version=str(version),
            output_format=_output_format(latex_section),
            bin_directory=_optional_str(latex_section, "bin_directory"),
            typeset_steps=_optional_list(latex_section, "typeset_steps"),
            build_steps=_optional_list(latex_section, "build_steps"),
            steps=steps,
            keep_intermediate_files=_bool(latex_section, "keep_intermediate_files", False),
            source_directory=_optional_str(latex_section, "source_directory") or DEFAULT_SOURCE_DIRECTORY,
            index_style_file=_optional_str(latex_section, "index_style_file"),
            halt_on_error=_bool(latex_section, "halt_on_error", True),
            tex_file=_optional_str(latex_section, "tex_file"),
            resources=_optional_list(latex_section, "resources"),
            dependencies=_optional_list(latex_section, "dependencies") or [],
            repository=_optional_str(latex_section, "repository") or DEFAULT_REPOSITORY,
        )

    @property
    def source_path(self) -> Path:
        return self.project_dir / self.source_directory

    @property
    def target_path(self) -> Path:
        return self.project_dir / "target"

    @property
    def working_path(self) -> Path:
        return self.target_path / "latex"

    @property
    def artifact_name(self) -> str:
        return f"{self.artifact_id}-{self.version}.{self.output_format}"

    def describe(self) -> List[Tuple[str, str]]:
        rows: List[Tuple[str, str]] = [
            ("bin directory", self.bin_directory or "<PATH>"),
            ("output format", self.output_format),
            ("source directory", self.source_directory),
        ]
        if self.typeset_steps is not None:
            rows.append(("typeset steps", ",".join(self.typeset_steps)))
        if self.build_steps is not None:
            rows.append(("build steps", ",".join(self.build_steps)))
        return rows


def load_configuration(path: Path | None, *, project_dir: Path) -> BuildConfiguration:
    """Load the configuration file at *path*, or the defaults when it is ``None``."""
    data: Dict[str, Any] = {}
    if path is not None:
        try:
            data = dict(load_config_file(path))
        except (OSError, ValueError, TypeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Could not load configuration {path}: {exc}") from exc
    return BuildConfiguration.from_mapping(data, project_dir=project_dir)


def find_configuration(project_dir: Path) -> Path | None:
    """Locate texbuild.toml, texbuild.json or texbuild.yaml in *project_dir*."""
    try:
        return find_config_file(project_dir, CONFIG_FILE_STEM)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


__all__ = [
    "BuildConfiguration",
    "CONFIG_FILE_STEM",
    "DEFAULT_SOURCE_DIRECTORY",
    "find_configuration",
    "load_configuration",
]
