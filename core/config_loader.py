"""Loading configuration mappings from TOML, JSON or YAML files."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence

import json
import tomllib

import yaml


ConfigLoader = Callable[[Any], Mapping[str, Any]]


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream),
    ".yml": lambda stream: yaml.safe_load(stream),
}
"""Loader per file suffix; TOML is read in binary mode."""


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Decode the mapping stored in *path*. An empty document yields ``{}``."""
    suffix = path.suffix.lower()
    loader = FILE_LOADERS.get(suffix)
    if loader is None:
        supported = ", ".join(sorted(FILE_LOADERS))
        raise ValueError(f"Unsupported configuration file extension '{suffix}' (supported: {supported})")

    if suffix == ".toml":
        with path.open("rb") as handle:
            data = loader(handle)
    else:
        with path.open("r", encoding="utf-8") as handle:
            data = loader(handle)

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a mapping at the root")
    return data


def find_config_file(directory: Path, stem: str) -> Path | None:
    """Return ``<directory>/<stem>.<suffix>`` for the one supported suffix present.

    Two files for the same stem in different formats are ambiguous and raise
    :class:`ValueError`.
    """
    found = [directory / f"{stem}{suffix}" for suffix in FILE_LOADERS]
    found = [path for path in found if path.is_file()]
    if len(found) > 1:
        names = ", ".join(path.name for path in found)
        raise ValueError(f"Multiple configuration files found for '{stem}': {names}. Keep only one.")
    return found[0] if found else None


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Coerce *value* into a list of trimmed, non-empty strings."""
    label = f"{field_name} " if field_name else ""
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, Sequence):
        raise TypeError(f"{label}must be a string or a list of strings")

    items: List[str] = []
    for item in value:
        if not isinstance(item, str):
            raise TypeError(f"{label}entries must be strings")
        if item.strip():
            items.append(item.strip())
    return items


__all__ = [
    "ConfigLoader",
    "FILE_LOADERS",
    "find_config_file",
    "load_config_file",
    "normalize_string_list",
]
