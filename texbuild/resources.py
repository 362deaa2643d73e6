"""Merging resources from dependency archives into the working directory."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Protocol, Sequence, runtime_checkable
import os
import re
import shutil
import tarfile
import tempfile
import zipfile

import zstandard as zstd

from core.archive import ArchiveManager

from .errors import ExtractionError, MergeIOError, ResolutionError
from .log import LogSink

DEFAULT_RESOURCE_EXTENSIONS = (
    "tex",
    "cls",
    "clo",
    "sty",
    "bib",
    "bst",
    "idx",
    "ist",
    "glo",
    "eps",
    "pdf",
)

DEFAULT_INCLUDES = tuple(f"**/*.{extension}" for extension in DEFAULT_RESOURCE_EXTENSIONS)


@runtime_checkable
class DependencyResolver(Protocol):
    """Turns dependency coordinates into a readable archive file."""

    def resolve(self, coordinates: str) -> Path:
        ...


class LocalRepositoryResolver:
    """Resolve ``group:artifact:version[:extension]`` against a Maven-layout repository.

    Coordinates that name an existing file are returned as-is.
    """

    def __init__(self, repository: Path | str) -> None:
        self.repository = Path(repository).expanduser()

    def resolve(self, coordinates: str) -> Path:
        candidate = Path(coordinates).expanduser()
        if candidate.is_file():
            return candidate

        parts = coordinates.split(":")
        if len(parts) not in (3, 4) or not all(parts):
            raise ResolutionError(coordinates, "expected group:artifact:version[:extension] or an archive path")
        group, artifact, version = parts[:3]
        extension = parts[3] if len(parts) == 4 else "jar"
        path = (
            self.repository.joinpath(*group.split("."))
            / artifact
            / version
            / f"{artifact}-{version}.{extension}"
        )
        if not path.is_file():
            raise ResolutionError(coordinates, f"{path} does not exist")
        return path


def _pattern_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate an Ant-style include pattern into a regular expression.

    ``**`` matches any number of directories (including none), ``*`` and ``?``
    stay within a single path segment.
    """
    normalized = pattern.replace("\\", "/").lstrip("/")
    if normalized.endswith("/"):
        normalized += "**"
    parts: List[str] = []
    index = 0
    while index < len(normalized):
        if normalized.startswith("**/", index):
            parts.append("(?:.*/)?")
            index += 3
        elif normalized.startswith("**", index):
            parts.append(".*")
            index += 2
        elif normalized[index] == "*":
            parts.append("[^/]*")
            index += 1
        elif normalized[index] == "?":
            parts.append("[^/]")
            index += 1
        else:
            parts.append(re.escape(normalized[index]))
            index += 1
    return re.compile("".join(parts) + r"\Z")


class IncludeFilter:
    def __init__(self, patterns: Iterable[str]) -> None:
        self.patterns = tuple(patterns)
        self._compiled = [_pattern_to_regex(pattern) for pattern in self.patterns]

    def matches(self, relative_path: str) -> bool:
        return any(regex.match(relative_path) for regex in self._compiled)

    def select(self, root: Path) -> List[str]:
        """Return the POSIX paths of matching files under *root*, sorted."""
        selected: List[str] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            current = Path(dirpath)
            for filename in sorted(filenames):
                relative = (current / filename).relative_to(root).as_posix()
                if self.matches(relative):
                    selected.append(relative)
        return selected


class ResourceMerger:
    """Copy matching files of dependency archives into a working directory.

    Files already present in the working directory are kept, so resources of
    earlier dependencies win over later ones and the primary source tree,
    copied afterwards, overrides everything.
    """

    def __init__(self, console: LogSink, includes: Sequence[str] | None = None) -> None:
        self._console = console
        self._filter = IncludeFilter(includes or DEFAULT_INCLUDES)
        self._archives = ArchiveManager(console)

    @property
    def includes(self) -> tuple[str, ...]:
        return self._filter.patterns

    def merge(self, archive: Path, working_directory: Path) -> List[str]:
        """Merge *archive* into *working_directory* and return the copied paths."""
        extraction_dir = Path(tempfile.mkdtemp(prefix="texbuild-"))
        try:
            try:
                self._archives.extract_archive(archive_path=archive, destination_dir=extraction_dir)
            except (OSError, ValueError, zipfile.BadZipFile, tarfile.TarError, zstd.ZstdError) as exc:
                raise ExtractionError(archive, str(exc)) from exc
            return self._copy_selected(extraction_dir, working_directory)
        finally:
            shutil.rmtree(extraction_dir, ignore_errors=True)

    def _copy_selected(self, source_root: Path, working_directory: Path) -> List[str]:
        copied: List[str] = []
        for relative in self._filter.select(source_root):
            dest = working_directory.joinpath(*relative.split("/"))
            if dest.exists():
                self._console.debug(f"[texbuild] keeping existing resource {relative}")
                continue
            self._console.info(f"[texbuild] including resource {relative}")
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source_root / relative, dest)
            except OSError as exc:
                raise MergeIOError(dest, str(exc)) from exc
            copied.append(relative)
        return copied


def copy_source_tree(source: Path, working_directory: Path) -> None:
    """Copy *source* over *working_directory*; source files replace merged resources."""
    try:
        shutil.copytree(source, working_directory, dirs_exist_ok=True)
    except (OSError, shutil.Error) as exc:
        raise MergeIOError(source, f"could not copy to {working_directory}: {exc}") from exc


__all__ = [
    "DEFAULT_INCLUDES",
    "DEFAULT_RESOURCE_EXTENSIONS",
    "DependencyResolver",
    "IncludeFilter",
    "LocalRepositoryResolver",
    "ResourceMerger",
    "copy_source_tree",
]
