from __future__ import annotations

from pathlib import Path
import os
import tempfile
import unittest

from texbuild.executables import executable_name, resolve_executable
from texbuild.steps import BUILTIN_STEPS


class ResolveExecutableTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        root = Path(self.temp_dir.name)
        self.bin_dir = root / "texbin"
        self.override_dir = root / "override"
        self.path_one = root / "path-one"
        self.path_two = root / "path-two"
        for directory in (self.bin_dir, self.override_dir, self.path_one, self.path_two):
            directory.mkdir()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _touch(self, directory: Path, name: str = "pdflatex") -> Path:
        path = directory / name
        path.write_text("#!/bin/sh\n")
        return path

    def _environ(self, *, texbin: Path | None = None) -> dict[str, str]:
        environ = {"PATH": os.pathsep.join([str(self.path_one), str(self.path_two)])}
        if texbin is not None:
            environ["TEXBIN"] = str(texbin)
        return environ

    def test_configured_bin_directory_wins_over_path(self) -> None:
        expected = self._touch(self.bin_dir)
        self._touch(self.path_one)
        result = resolve_executable(self.bin_dir, "pdflatex", environ=self._environ())
        self.assertEqual(result, expected)

    def test_override_directory_before_path(self) -> None:
        expected = self._touch(self.override_dir)
        self._touch(self.path_one)
        result = resolve_executable(None, "pdflatex", environ=self._environ(texbin=self.override_dir))
        self.assertEqual(result, expected)

    def test_path_entries_in_order(self) -> None:
        self._touch(self.path_two)
        expected = self._touch(self.path_one)
        result = resolve_executable(self.bin_dir, "pdflatex", environ=self._environ())
        self.assertEqual(result, expected)

    def test_missing_bin_directory_falls_through(self) -> None:
        expected = self._touch(self.path_two)
        result = resolve_executable(self.bin_dir / "absent", "pdflatex", environ=self._environ())
        self.assertEqual(result, expected)

    def test_not_found_returns_none(self) -> None:
        self.assertIsNone(resolve_executable(self.bin_dir, "pdflatex", environ=self._environ()))

    def test_executable_name_by_os_family(self) -> None:
        step = BUILTIN_STEPS["bib-process"]
        self.assertEqual(executable_name(step, "posix"), "bibtex")
        self.assertEqual(executable_name(step, "windows"), "bibtex.exe")


if __name__ == "__main__":
    unittest.main()
