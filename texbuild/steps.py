"""Step definitions and the step registry."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping
import re

from .errors import ConfigurationError

OS_FAMILIES = ("posix", "windows")

INPUT_PLACEHOLDER = "%input"
BASE_PLACEHOLDER = "%base"
STYLE_PLACEHOLDER = "%style"

# The placeholder plus an option directly in front of it, such as "-s %style" or "--style=%style".
_STYLE_FLAG_PATTERN = re.compile(r"\s*(?:(?<!\S)--?[A-Za-z][\w-]*(?:=|\s+)?)?%style")


def _default_executables(name: str) -> Dict[str, str]:
    windows = name if name.lower().endswith(".exe") else f"{name}.exe"
    return {"posix": name, "windows": windows}


def _parse_executables(step_id: str, value: Any) -> Dict[str, str]:
    if isinstance(value, str) and value.strip():
        return _default_executables(value.strip())
    if isinstance(value, Mapping):
        unknown = {str(key) for key in value.keys() if str(key) not in OS_FAMILIES}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigurationError(f"Step '{step_id}' names unknown operating system families: {joined}")
        executables = {str(key): str(item).strip() for key, item in value.items() if str(item).strip()}
        if "posix" in executables and "windows" not in executables:
            executables["windows"] = _default_executables(executables["posix"])["windows"]
        if "windows" in executables and "posix" not in executables:
            executables["posix"] = executables["windows"].removesuffix(".exe")
        if executables:
            return executables
    raise ConfigurationError(f"Step '{step_id}' must specify an executable")


@dataclass(frozen=True, slots=True)
class StepDefinition:
    """Immutable description of one external tool invocation.

    ``input_extension`` names the file ``<base>.<input_extension>`` whose
    presence decides whether a non-zero exit code is an error. ``log_extension``
    names the tool's own log file, merged into the build log after the step.
    """

    id: str
    executables: Mapping[str, str]
    arguments: str
    input_extension: str
    log_extension: str | None = None
    optional: bool = False
    description: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "executables", MappingProxyType(dict(self.executables)))

    @classmethod
    def from_mapping(cls, step_id: str, data: Mapping[str, Any]) -> "StepDefinition":
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Step '{step_id}' definition must be a mapping")

        allowed_keys = {
            "description",
            "executable",
            "arguments",
            "input_extension",
            "log_extension",
            "optional",
        }
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigurationError(f"Step '{step_id}' contains unknown keys: {joined}")

        executables = _parse_executables(step_id, data.get("executable"))

        arguments = data.get("arguments", "")
        if not isinstance(arguments, str):
            raise ConfigurationError(f"Step '{step_id}' arguments must be a string")

        input_extension = data.get("input_extension")
        if not isinstance(input_extension, str) or not input_extension.strip():
            raise ConfigurationError(f"Step '{step_id}' must specify an input_extension")

        log_extension = data.get("log_extension")
        if log_extension is not None and not isinstance(log_extension, str):
            raise ConfigurationError(f"Step '{step_id}' log_extension must be a string")

        optional = data.get("optional", False)
        if not isinstance(optional, bool):
            raise ConfigurationError(f"Step '{step_id}' optional must be a boolean")

        description = data.get("description")
        return cls(
            id=step_id,
            executables=executables,
            arguments=arguments.strip(),
            input_extension=input_extension.strip().lstrip("."),
            log_extension=log_extension.strip().lstrip(".") if log_extension and log_extension.strip() else None,
            optional=optional,
            description=str(description) if description is not None else None,
        )

    def executable_name(self, os_family: str) -> str:
        name = self.executables.get(os_family)
        if name is None:
            name = self.executables.get("posix") or next(iter(self.executables.values()))
        return name

    def with_style(self, style_file: str | None) -> "StepDefinition":
        """Return a copy with the ``%style`` placeholder resolved.

        Without a style file the placeholder is dropped together with the
        option in front of it, since ``-s`` with an empty value is an error
        for makeindex.
        """
        if STYLE_PLACEHOLDER not in self.arguments:
            return self
        if style_file:
            arguments = self.arguments.replace(STYLE_PLACEHOLDER, style_file)
        else:
            arguments = _STYLE_FLAG_PATTERN.sub("", self.arguments).replace(STYLE_PLACEHOLDER, "").strip()
        return replace(self, arguments=arguments)

    def render_arguments(self, document: str, base_name: str) -> str:
        return self.arguments.replace(INPUT_PLACEHOLDER, document).replace(BASE_PLACEHOLDER, base_name)

    def input_file_name(self, base_name: str) -> str:
        return f"{base_name}.{self.input_extension}"

    def log_file_name(self, base_name: str) -> str | None:
        if self.log_extension is None:
            return None
        return f"{base_name}.{self.log_extension}"


def _build_builtin_definitions() -> Dict[str, StepDefinition]:
    raw: Dict[str, Mapping[str, Any]] = {
        "typeset": {
            "description": "LaTeX to DVI",
            "executable": "latex",
            "arguments": "-interaction=nonstopmode --src-specials %input",
            "input_extension": "tex",
            "log_extension": "log",
        },
        "pdf-typeset": {
            "description": "LaTeX to PDF",
            "executable": "pdflatex",
            "arguments": "-synctex=1 -interaction=nonstopmode %input",
            "input_extension": "tex",
            "log_extension": "log",
        },
        "lu-typeset": {
            "description": "LuaLaTeX to PDF",
            "executable": "lualatex",
            "arguments": "-synctex=1 -interaction=nonstopmode %input",
            "input_extension": "tex",
            "log_extension": "log",
        },
        "xe-typeset": {
            "description": "XeLaTeX to PDF",
            "executable": "xelatex",
            "arguments": "-synctex=1 -interaction=nonstopmode %input",
            "input_extension": "tex",
            "log_extension": "log",
        },
        "bib-process": {
            "description": "BibTeX bibliography",
            "executable": "bibtex",
            "arguments": "%base",
            "input_extension": "bib",
            "log_extension": "blg",
        },
        "bib-process-alt": {
            "description": "Biber bibliography",
            "executable": "biber",
            "arguments": "%base",
            "input_extension": "bcf",
            "log_extension": "blg",
        },
        "make-index": {
            "description": "Index",
            "executable": "makeindex",
            "arguments": "%base.idx -s %style",
            "input_extension": "idx",
            "log_extension": "ilg",
            "optional": True,
        },
        "make-index-nomenclature": {
            "description": "Nomenclature",
            "executable": "makeindex",
            "arguments": "%base.nlo -s nomencl.ist -o %base.nls",
            "input_extension": "nlo",
            "log_extension": "ilg",
            "optional": True,
        },
        "dvi-to-ps": {
            "description": "DVI to PostScript",
            "executable": "dvips",
            "arguments": "-R0 -o %base.ps %base.dvi",
            "input_extension": "dvi",
        },
        "dvi-to-pdf": {
            "description": "DVI to PDF",
            "executable": "dvipdfm",
            "arguments": "%base",
            "input_extension": "dvi",
        },
        "ps-to-pdf": {
            "description": "PostScript to PDF",
            "executable": "ps2pdf",
            "arguments": "%base.ps %base.pdf",
            "input_extension": "ps",
        },
    }

    return {step_id: StepDefinition.from_mapping(step_id, data) for step_id, data in raw.items()}


class StepRegistry:
    """Lookup of step definitions by id; a later definition replaces an earlier one."""

    def __init__(self, definitions: Mapping[str, StepDefinition] | None = None) -> None:
        self._definitions: Dict[str, StepDefinition] = dict(definitions or {})

    @classmethod
    def with_builtins(cls) -> "StepRegistry":
        return cls(BUILTIN_STEPS)

    @classmethod
    def from_definitions(cls, definitions: Iterable[StepDefinition] | None) -> "StepRegistry":
        registry = cls.with_builtins()
        if definitions:
            registry.merge({definition.id: definition for definition in definitions})
        return registry

    def copy(self) -> "StepRegistry":
        return StepRegistry(self._definitions)

    def merge(self, definitions: Mapping[str, StepDefinition]) -> None:
        for step_id, definition in definitions.items():
            self._definitions[step_id] = definition

    def merge_from_mapping(self, mapping: Mapping[str, Any]) -> None:
        if not mapping:
            return
        steps_section = mapping.get("steps")
        candidates = steps_section if isinstance(steps_section, Mapping) else mapping
        parsed: Dict[str, StepDefinition] = {}
        for raw_id, raw_value in candidates.items():
            step_id = str(raw_id).strip()
            if step_id:
                parsed[step_id] = StepDefinition.from_mapping(step_id, raw_value)
        self.merge(parsed)

    def get(self, step_id: str) -> StepDefinition | None:
        return self._definitions.get(step_id)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._definitions

    def available(self) -> Iterable[str]:
        return self._definitions.keys()

    def definitions(self) -> Iterable[StepDefinition]:
        return self._definitions.values()


BUILTIN_STEPS = MappingProxyType(_build_builtin_definitions())

__all__ = [
    "BUILTIN_STEPS",
    "OS_FAMILIES",
    "StepDefinition",
    "StepRegistry",
]
