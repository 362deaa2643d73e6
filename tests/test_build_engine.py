from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Mapping, Sequence
import stat
import tempfile
import textwrap
import unittest
import zipfile
from unittest.mock import patch

from core.command_runner import CommandResult, CommandRunner, RecordingCommandRunner, SubprocessCommandRunner
from texbuild.config import BuildConfiguration
from texbuild.engine import BUILD_LOG_NAME, BuildEngine, StepOutcome
from texbuild.errors import (
    ConfigurationError,
    ExecutableNotFoundError,
    ResolutionError,
    StepExecutionFailure,
    UnknownStepError,
)

Behaviour = Callable[[Path], int]


class RecordingConsole:
    def __init__(self) -> None:
        self.messages: Dict[str, List[str]] = {"info": [], "warn": [], "error": [], "debug": []}

    def info(self, message: str) -> None:
        self.messages["info"].append(message)

    def warn(self, message: str) -> None:
        self.messages["warn"].append(message)

    def error(self, message: str) -> None:
        self.messages["error"].append(message)

    def debug(self, message: str) -> None:
        self.messages["debug"].append(message)


class ScriptedRunner(CommandRunner):
    """Runner whose behaviour per step id is a callable receiving the working directory."""

    def __init__(self, behaviours: Mapping[str, Behaviour | BaseException]) -> None:
        self.behaviours = dict(behaviours)
        self.calls: List[tuple[str | None, List[str]]] = []

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        on_stdout=None,
        on_stderr=None,
    ) -> CommandResult:
        self.calls.append((note, list(command)))
        behaviour = self.behaviours.get(note or "")
        if isinstance(behaviour, BaseException):
            raise behaviour
        returncode = behaviour(cwd) if behaviour is not None else 0
        if on_stdout is not None:
            on_stdout(f"{note} says hello")
        return CommandResult(command=command, returncode=returncode, stdout="", stderr="")

    @property
    def notes(self) -> List[str | None]:
        return [note for note, _ in self.calls]


def typeset(cwd: Path) -> int:
    (cwd / "main.log").write_text("This is pdfTeX\n")
    (cwd / "main.pdf").write_bytes(b"%PDF-1.5\n")
    return 0


def exit_with(code: int) -> Behaviour:
    def behaviour(cwd: Path) -> int:
        return code

    return behaviour


class BuildEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        root = Path(self.temp_dir.name)
        self.project = root / "project"
        self.source = self.project / "src" / "main" / "tex"
        self.source.mkdir(parents=True)
        (self.source / "main.tex").write_text("\\documentclass{article}\n")
        self.bin_dir = root / "texbin"
        self.bin_dir.mkdir()
        for name in ("latex", "pdflatex", "bibtex", "makeindex", "dvips"):
            (self.bin_dir / name).write_text("")
        self.console = RecordingConsole()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _config(self, **overrides) -> BuildConfiguration:
        values = {
            "project_dir": self.project,
            "artifact_id": "doc",
            "version": "1.0",
            "bin_directory": str(self.bin_dir),
        }
        values.update(overrides)
        return BuildConfiguration(**values)

    def _engine(self, runner: CommandRunner, **kwargs) -> BuildEngine:
        return BuildEngine(
            console=self.console,
            command_runner=runner,
            environ={"PATH": ""},
            os_family="posix",
            **kwargs,
        )

    def test_pdf_build_publishes_artifact(self) -> None:
        runner = ScriptedRunner({"pdf-typeset": typeset})

        result = self._engine(runner).build(self._config())

        self.assertEqual(
            runner.notes,
            ["pdf-typeset", "bib-process", "make-index", "make-index-nomenclature", "pdf-typeset", "pdf-typeset"],
        )
        self.assertEqual(
            runner.calls[0][1],
            [str(self.bin_dir / "pdflatex"), "-synctex=1", "-interaction=nonstopmode", "main.tex"],
        )
        self.assertEqual(runner.calls[2][1], [str(self.bin_dir / "makeindex"), "main.idx"])
        self.assertEqual(
            runner.calls[3][1],
            [str(self.bin_dir / "makeindex"), "main.nlo", "-s", "nomencl.ist", "-o", "main.nls"],
        )
        artifact = self.project / "target" / "doc-1.0.pdf"
        self.assertEqual(result.artifact, artifact)
        self.assertEqual(artifact.read_bytes(), b"%PDF-1.5\n")
        self.assertFalse((self.project / "target" / "latex").exists())
        self.assertTrue(all(report.outcome is StepOutcome.SUCCEEDED for report in result.reports))
        self.assertIn("[texbuild][pdf-typeset] pdf-typeset says hello", self.console.messages["debug"])

    def test_style_file_is_passed_to_makeindex(self) -> None:
        runner = ScriptedRunner({"pdf-typeset": typeset})
        self._engine(runner).build(self._config(index_style_file="book.ist"))
        self.assertEqual(runner.calls[2][1], [str(self.bin_dir / "makeindex"), "main.idx", "-s", "book.ist"])

    def test_aggregate_log_is_kept_with_intermediate_files(self) -> None:
        runner = ScriptedRunner({"pdf-typeset": typeset})

        result = self._engine(runner).build(self._config(keep_intermediate_files=True))

        working = self.project / "target" / "latex"
        self.assertEqual(result.log_path, working / BUILD_LOG_NAME)
        content = result.log_path.read_text()
        self.assertIn("#" * 50 + "\n# Step 1/6 pdf-typeset\n" + "#" * 50 + "\nThis is pdfTeX\n", content)
        self.assertIn("# Step 2/6 bib-process\n", content)
        self.assertIn("# Step 6/6 pdf-typeset\n", content)
        self.assertEqual(content.count("This is pdfTeX"), 3)
        self.assertFalse((working / "main.log").exists())

    def test_missing_executables_are_reported_together(self) -> None:
        (self.bin_dir / "bibtex").unlink()
        (self.bin_dir / "makeindex").unlink()
        runner = ScriptedRunner({})

        with self.assertRaises(ExecutableNotFoundError) as ctx:
            self._engine(runner).build(self._config())

        self.assertEqual(ctx.exception.step_ids, ["bib-process", "make-index", "make-index-nomenclature"])
        self.assertEqual(len(self.console.messages["error"]), 3)
        self.assertEqual(runner.calls, [])
        self.assertFalse((self.project / "target").exists())

    def test_unknown_step_fails_before_resolving_executables(self) -> None:
        runner = ScriptedRunner({})
        with patch("texbuild.engine.resolve_executable") as resolver:
            with self.assertRaises(UnknownStepError):
                self._engine(runner).build(self._config(build_steps=["TYPESET", "nope"]))
        resolver.assert_not_called()
        self.assertEqual(runner.calls, [])

    def test_invalid_format_is_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            self._engine(ScriptedRunner({})).build(self._config(output_format="html"))

    def test_missing_source_directory(self) -> None:
        with self.assertRaises(ConfigurationError):
            self._engine(ScriptedRunner({})).build(self._config(source_directory="src/missing"))

    def test_nonzero_exit_without_input_is_skipped(self) -> None:
        runner = ScriptedRunner({"pdf-typeset": typeset, "bib-process": exit_with(2)})

        result = self._engine(runner).build(self._config())

        self.assertEqual(len(runner.calls), 6)
        self.assertEqual(result.reports[1].outcome, StepOutcome.SKIPPED)
        self.assertEqual(result.reports[1].exit_code, 2)
        self.assertIsNotNone(result.artifact)

    def test_nonzero_exit_with_input_halts(self) -> None:
        (self.source / "main.bib").write_text("@book{x}")
        runner = ScriptedRunner({"pdf-typeset": typeset, "bib-process": exit_with(2)})

        with self.assertRaises(StepExecutionFailure) as ctx:
            self._engine(runner).build(self._config())

        self.assertEqual(ctx.exception.step_id, "bib-process")
        self.assertEqual(ctx.exception.exit_code, 2)
        self.assertEqual(runner.notes, ["pdf-typeset", "bib-process"])
        self.assertFalse((self.project / "target" / "doc-1.0.pdf").exists())
        self.assertFalse((self.project / "target" / "latex").exists())

    def test_nonzero_exit_with_input_tolerated_without_halt(self) -> None:
        (self.source / "main.bib").write_text("@book{x}")
        runner = ScriptedRunner({"pdf-typeset": typeset, "bib-process": exit_with(2)})

        result = self._engine(runner).build(self._config(halt_on_error=False))

        self.assertEqual(len(runner.calls), 6)
        self.assertEqual(result.reports[1].outcome, StepOutcome.COMPLETED_WITH_ERRORS)
        self.assertTrue((self.project / "target" / "doc-1.0.pdf").is_file())

    def test_missing_input_is_skipped_without_halt(self) -> None:
        runner = ScriptedRunner({"pdf-typeset": typeset, "bib-process": exit_with(2)})

        result = self._engine(runner).build(self._config(halt_on_error=False))

        self.assertEqual(len(runner.calls), 6)
        self.assertEqual(result.reports[1].outcome, StepOutcome.SKIPPED)
        self.assertTrue((self.project / "target" / "doc-1.0.pdf").is_file())

    def test_kept_working_directory_is_rebuilt_from_scratch(self) -> None:
        archive = Path(self.temp_dir.name) / "styles-1.0.jar"

        class Resolver:
            def resolve(self, coordinates: str) -> Path:
                return archive

        seen: List[str] = []

        def inspect(cwd: Path) -> int:
            seen.append((cwd / "house.sty").read_text())
            return typeset(cwd)

        config = self._config(dependencies=["org:styles:1.0"], keep_intermediate_files=True)
        for version in ("v1", "v2"):
            with zipfile.ZipFile(archive, "w") as zf:
                zf.writestr("house.sty", version)
            runner = ScriptedRunner({"pdf-typeset": inspect})
            result = self._engine(runner, resolver=Resolver()).build(config)

        self.assertEqual(seen, ["v1"] * 3 + ["v2"] * 3)
        self.assertEqual(result.log_path.read_text().count("# Step 1/6 pdf-typeset"), 1)

    def test_failed_build_removes_previous_artifact(self) -> None:
        self._engine(ScriptedRunner({"pdf-typeset": typeset})).build(self._config())
        artifact = self.project / "target" / "doc-1.0.pdf"
        self.assertTrue(artifact.is_file())

        (self.source / "main.bib").write_text("@book{x}")
        runner = ScriptedRunner({"pdf-typeset": typeset, "bib-process": exit_with(2)})
        with self.assertRaises(StepExecutionFailure):
            self._engine(runner).build(self._config())

        self.assertFalse(artifact.exists())

    def test_spawn_failure_of_optional_step_is_skipped(self) -> None:
        runner = ScriptedRunner({"pdf-typeset": typeset, "make-index": PermissionError("denied")})

        result = self._engine(runner).build(self._config())

        self.assertEqual(result.reports[2].outcome, StepOutcome.SKIPPED)
        self.assertEqual(len(runner.calls), 6)

    def test_spawn_failure_of_required_step_fails(self) -> None:
        runner = ScriptedRunner({"pdf-typeset": typeset, "bib-process": PermissionError("denied")})

        with self.assertRaises(StepExecutionFailure) as ctx:
            self._engine(runner).build(self._config())

        self.assertIsNone(ctx.exception.exit_code)
        self.assertEqual(runner.notes, ["pdf-typeset", "bib-process"])

    def test_missing_output_fails_without_artifact(self) -> None:
        runner = ScriptedRunner({})

        with self.assertRaises(StepExecutionFailure):
            self._engine(runner).build(self._config())

        self.assertEqual(len(runner.calls), 6)
        self.assertFalse((self.project / "target" / "doc-1.0.pdf").exists())

    def test_ps_build_uses_dvi_chain(self) -> None:
        def dvips(cwd: Path) -> int:
            (cwd / "main.ps").write_text("%!PS")
            return 0

        runner = ScriptedRunner({"dvi-to-ps": dvips})
        result = self._engine(runner).build(self._config(output_format="ps"))

        self.assertEqual(runner.notes[:2], ["typeset", "dvi-to-ps"])
        self.assertEqual(len(runner.calls), 9)
        self.assertEqual(result.artifact, self.project / "target" / "doc-1.0.ps")

    def test_multiple_documents_need_tex_file(self) -> None:
        (self.source / "appendix.tex").write_text("")
        with self.assertRaises(ConfigurationError):
            self._engine(ScriptedRunner({})).build(self._config())

        runner = ScriptedRunner({"pdf-typeset": typeset})
        result = self._engine(runner).build(self._config(tex_file="main.tex"))
        self.assertIsNotNone(result.artifact)

    def test_dependencies_are_merged_before_sources(self) -> None:
        archive = Path(self.temp_dir.name) / "styles-1.0.jar"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("house.sty", b"dependency")
            zf.writestr("logo.eps", b"eps")
            zf.writestr("META-INF/MANIFEST.MF", b"")
        (self.source / "house.sty").write_text("source")

        class Resolver:
            def resolve(self, coordinates: str) -> Path:
                return archive

        seen: Dict[str, str] = {}

        def inspect(cwd: Path) -> int:
            seen["house"] = (cwd / "house.sty").read_text()
            seen["logo"] = (cwd / "logo.eps").read_text()
            seen["manifest"] = str((cwd / "META-INF").exists())
            return typeset(cwd)

        runner = ScriptedRunner({"pdf-typeset": inspect})
        self._engine(runner, resolver=Resolver()).build(self._config(dependencies=["org:styles:1.0"]))

        self.assertEqual(seen, {"house": "source", "logo": "eps", "manifest": "False"})

    def test_resolution_error_aborts_before_working_directory(self) -> None:
        class Resolver:
            def resolve(self, coordinates: str) -> Path:
                raise ResolutionError(coordinates)

        runner = ScriptedRunner({})
        with self.assertRaises(ResolutionError):
            self._engine(runner, resolver=Resolver()).build(self._config(dependencies=["org:styles:1.0"]))
        self.assertFalse((self.project / "target" / "latex").exists())
        self.assertEqual(runner.calls, [])

    def test_dry_run_records_commands_and_publishes_nothing(self) -> None:
        runner = RecordingCommandRunner()

        result = self._engine(runner).build(self._config(), dry_run=True)

        self.assertEqual(len(runner.commands), 6)
        self.assertIsNone(result.artifact)
        self.assertFalse((self.project / "target" / "doc-1.0.pdf").exists())


class SubprocessBuildTests(unittest.TestCase):
    """End-to-end build with shell scripts standing in for the TeX tools."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        root = Path(self.temp_dir.name)
        self.project = root / "project"
        source = self.project / "src" / "main" / "tex"
        source.mkdir(parents=True)
        (source / "paper.tex").write_text("\\documentclass{article}\n")
        self.bin_dir = root / "bin"
        self.bin_dir.mkdir()
        self._script(
            "pdflatex",
            """
            for last; do :; done
            base="${last%.tex}"
            echo "pass over $last" > "$base.log"
            echo "progress on stdout"
            echo "warning on stderr" >&2
            printf '%%PDF' > "$base.pdf"
            """,
        )
        self._script("bibtex", 'echo "no citations" > "$1.blg"\nexit 2')
        self._script("makeindex", "exit 1")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _script(self, name: str, body: str) -> None:
        path = self.bin_dir / name
        path.write_text("#!/bin/sh\n" + textwrap.dedent(body).strip() + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def test_build_with_real_processes(self) -> None:
        console = RecordingConsole()
        engine = BuildEngine(
            console=console,
            command_runner=SubprocessCommandRunner(),
            environ={"PATH": ""},
            os_family="posix",
        )
        config = BuildConfiguration(
            project_dir=self.project,
            artifact_id="paper",
            version="2",
            bin_directory=str(self.bin_dir),
            keep_intermediate_files=True,
        )

        result = engine.build(config)

        self.assertEqual((self.project / "target" / "paper-2.pdf").read_text(), "%PDF")
        self.assertEqual(
            [report.outcome for report in result.reports],
            [
                StepOutcome.SUCCEEDED,
                StepOutcome.SKIPPED,
                StepOutcome.SKIPPED,
                StepOutcome.SKIPPED,
                StepOutcome.SUCCEEDED,
                StepOutcome.SUCCEEDED,
            ],
        )
        log = result.log_path.read_text()
        self.assertIn("pass over paper.tex", log)
        self.assertIn("no citations", log)
        self.assertIn("[texbuild][pdf-typeset] progress on stdout", console.messages["debug"])
        self.assertIn("[texbuild][pdf-typeset] warning on stderr", console.messages["error"])


if __name__ == "__main__":
    unittest.main()
