"""Archive extraction utilities reusable across projects."""
from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable
import shutil
import tarfile
import zipfile

import zstandard as zstd

_SUFFIX_FORMATS: list[tuple[str, str]] = [
    (".tar.zst", "zst"),
    (".tzst", "zst"),
    (".tar.gz", "gztar"),
    (".tgz", "gztar"),
    (".tar.bz2", "bztar"),
    (".tbz", "bztar"),
    (".tar.xz", "xztar"),
    (".txz", "xztar"),
    (".tar", "tar"),
    (".zip", "zip"),
    (".jar", "zip"),
]

_FORMAT_ALIASES: dict[str, str] = {
    "zst": "zst",
    "tar.zst": "zst",
    "tzst": "zst",
    "gztar": "gztar",
    "gz": "gztar",
    "tar.gz": "gztar",
    "tgz": "gztar",
    "bztar": "bztar",
    "bz2": "bztar",
    "tar.bz2": "bztar",
    "tbz": "bztar",
    "xztar": "xztar",
    "xz": "xztar",
    "tar.xz": "xztar",
    "txz": "xztar",
    "tar": "tar",
    "zip": "zip",
    "jar": "zip",
}

_TAR_MODES: dict[str, str] = {
    "gztar": "r:gz",
    "bztar": "r:bz2",
    "xztar": "r:xz",
    "tar": "r:",
}


@runtime_checkable
class ArchiveConsole(Protocol):
    """Minimal console interface required by :class:`ArchiveManager`."""

    def info(self, message: str) -> None:
        ...


class ArchiveManager:
    """Extract archives into directories."""

    def __init__(self, console: ArchiveConsole) -> None:
        self._console = console

    @staticmethod
    def resolve_archive_format(archive: Path, format_hint: str | None = None) -> str:
        if format_hint:
            normalized = format_hint.strip().lower()
            if normalized in _FORMAT_ALIASES:
                return _FORMAT_ALIASES[normalized]
            raise ValueError(f"Unsupported archive format hint '{format_hint}'")

        filename = archive.name.lower()
        for suffix, fmt in sorted(_SUFFIX_FORMATS, key=lambda item: len(item[0]), reverse=True):
            if filename.endswith(suffix):
                return fmt

        raise ValueError(
            f"Unable to determine archive format of '{archive.name}'. "
            "Provide an explicit format_hint or use a supported suffix."
        )

    def extract_archive(
        self,
        *,
        archive_path: Path | str,
        destination_dir: Path | str,
        format_hint: str | None = None,
    ) -> None:
        """Extract an archive to a destination directory.

        Parameters
        ----------
        archive_path:
            Path to the archive file.
        destination_dir:
            Directory where contents should be extracted. Created when missing.
        format_hint:
            Optional explicit archive format. When omitted the format is inferred
            from the archive suffix; ``.jar`` files are treated as zip archives.

        Raises :class:`ValueError` for entries that would be written outside of
        *destination_dir*.
        """
        archive = Path(archive_path).expanduser()
        dest = Path(destination_dir).expanduser()

        if not archive.exists():
            raise FileNotFoundError(f"Archive '{archive}' does not exist")

        dest.mkdir(parents=True, exist_ok=True)
        archive_format = self.resolve_archive_format(archive, format_hint)

        if archive_format == "zip":
            self._extract_zip(archive, dest)
        elif archive_format == "zst":
            self._extract_zst(archive, dest)
        elif archive_format in _TAR_MODES:
            with tarfile.open(archive, _TAR_MODES[archive_format]) as tar:
                self._extract_tar(tar, dest)
        else:
            raise ValueError(f"Unsupported archive format: {archive_format}")

        self._console.info(f"Extracted {archive} to {dest}")

    @staticmethod
    def _safe_target(dest: Path, name: str) -> Path:
        relative = PurePosixPath(name)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Archive entry '{name}' points outside of the destination")
        return dest.joinpath(*relative.parts)

    def _extract_zip(self, archive: Path, dest: Path) -> None:
        with zipfile.ZipFile(archive, "r") as zip_ref:
            for entry in zip_ref.infolist():
                target = self._safe_target(dest, entry.filename)
                if entry.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zip_ref.open(entry) as src, target.open("wb") as dst:
                    shutil.copyfileobj(src, dst)

    @staticmethod
    def _extract_tar(tar: tarfile.TarFile, dest: Path) -> None:
        try:
            tar.extractall(path=dest, filter="data")
        except tarfile.FilterError as exc:
            raise ValueError(str(exc)) from exc

    def _extract_zst(self, archive: Path, dest: Path) -> None:
        dctx = zstd.ZstdDecompressor()
        with archive.open("rb") as ifh:
            with dctx.stream_reader(ifh) as reader:
                with tarfile.open(fileobj=reader, mode="r|") as tar:
                    self._extract_tar(tar, dest)


__all__ = [
    "ArchiveConsole",
    "ArchiveManager",
]
