"""Build planning and step execution."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping
import shutil

from core.command_runner import CommandRunner

from .config import BuildConfiguration
from .errors import ConfigurationError, ExecutableNotFoundError, MergeIOError, StepExecutionFailure
from .executables import current_os_family, resolve_executable
from .log import AggregateLog, LogSink
from .pipeline import BuildPlan, resolve_pipeline
from .resources import DependencyResolver, LocalRepositoryResolver, ResourceMerger, copy_source_tree
from .steps import StepDefinition
from .tokenizer import tokenize

BUILD_LOG_NAME = "texbuild.log"


class StepOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    COMPLETED_WITH_ERRORS = "completed-with-errors"


@dataclass(slots=True)
class StepReport:
    index: int
    step_id: str
    outcome: StepOutcome
    exit_code: int | None = None


@dataclass(slots=True)
class PreparedBuild:
    plan: BuildPlan
    executables: Dict[str, Path]

    def command_for(self, step: StepDefinition, document: str, base_name: str) -> List[str]:
        return [str(self.executables[step.id]), *tokenize(step.render_arguments(document, base_name))]


@dataclass(slots=True)
class BuildResult:
    working_directory: Path
    log_path: Path
    artifact: Path | None = None
    reports: List[StepReport] = field(default_factory=list)


class BuildEngine:
    """Runs the resolved pipeline of one build.

    Steps run one after another in the working directory, each seeing the files
    left by the previous ones. A failing step raises
    :class:`~texbuild.errors.StepExecutionFailure` and stops the pipeline; the
    artifact is only published once every step has run and the expected output
    file exists.
    """

    def __init__(
        self,
        *,
        console: LogSink,
        command_runner: CommandRunner,
        resolver: DependencyResolver | None = None,
        environ: Mapping[str, str] | None = None,
        os_family: str | None = None,
    ) -> None:
        self._console = console
        self._command_runner = command_runner
        self._resolver = resolver
        self._environ = environ
        self._os_family = os_family or current_os_family()

    def prepare(self, config: BuildConfiguration) -> PreparedBuild:
        """Validate *config* and resolve every executable without running anything."""
        source = config.source_path
        if not source.is_dir():
            raise ConfigurationError(f"Source directory '{config.source_directory}' does not exist.")

        plan = resolve_pipeline(
            config.output_format,
            config.typeset_steps,
            config.build_steps,
            config.steps,
            index_style_file=config.index_style_file,
        )

        executables: Dict[str, Path] = {}
        missing: List[str] = []
        for step in plan.executables:
            name = step.executable_name(self._os_family)
            path = resolve_executable(config.bin_directory, name, environ=self._environ)
            if path is None:
                self._console.error(
                    f"Step {step.id} cannot be executed. Executable '{name}' neither found in "
                    f"configured bin directory '{config.bin_directory}' nor on PATH"
                )
                missing.append(step.id)
            else:
                executables[step.id] = path
        if missing:
            raise ExecutableNotFoundError(missing)

        return PreparedBuild(plan=plan, executables=executables)

    def build(self, config: BuildConfiguration, *, dry_run: bool = False) -> BuildResult:
        prepared = self.prepare(config)
        if not dry_run:
            self._discard_previous_artifact(config)
        for label, value in config.describe():
            self._console.info(f"[texbuild] {label}: {value}")
        self._console.info(f"[texbuild] latex steps: {','.join(step.id for step in prepared.plan.typeset_steps)}")
        self._console.info(f"[texbuild] build steps: {','.join(prepared.plan.step_ids())}")

        archives = self._resolve_dependencies(config)

        working_directory = config.working_path
        result = BuildResult(working_directory=working_directory, log_path=working_directory / BUILD_LOG_NAME)
        try:
            try:
                if working_directory.exists():
                    shutil.rmtree(working_directory)
                working_directory.mkdir(parents=True)
            except OSError as exc:
                raise MergeIOError(working_directory, str(exc)) from exc
            merger = ResourceMerger(self._console, config.resources)
            for archive in archives:
                merger.merge(archive, working_directory)
            copy_source_tree(config.source_path, working_directory)

            document = self._locate_document(config, working_directory)
            base_name = Path(document).stem
            self._console.info(f"[texbuild] processing {document}")

            result.reports = self._run_pipeline(
                prepared,
                working_directory=working_directory,
                document=document,
                base_name=base_name,
                halt_on_error=config.halt_on_error,
                log_path=result.log_path,
            )
            if not dry_run:
                result.artifact = self._publish(config, working_directory, base_name)
        finally:
            if not config.keep_intermediate_files:
                self._remove_working_directory(working_directory)
        return result

    def _resolve_dependencies(self, config: BuildConfiguration) -> List[Path]:
        if not config.dependencies:
            return []
        resolver = self._resolver or LocalRepositoryResolver(config.repository)
        archives: List[Path] = []
        for coordinates in config.dependencies:
            self._console.info(f"[texbuild] resolving dependency {coordinates}")
            archives.append(resolver.resolve(coordinates))
        return archives

    @staticmethod
    def _locate_document(config: BuildConfiguration, working_directory: Path) -> str:
        if config.tex_file:
            if not (working_directory / config.tex_file).is_file():
                raise ConfigurationError(f"No LaTeX source document {config.tex_file} found in {config.source_path}")
            return Path(config.tex_file).as_posix()

        candidates = sorted(path.name for path in working_directory.glob("*.tex") if path.is_file())
        if not candidates:
            raise ConfigurationError(f"No LaTeX source document found in {config.source_path}")
        if len(candidates) > 1:
            raise ConfigurationError(
                f"Multiple tex files found in {config.source_path}: {', '.join(candidates)}. "
                "Select the main document with 'tex_file'."
            )
        return candidates[0]

    def _run_pipeline(
        self,
        prepared: PreparedBuild,
        *,
        working_directory: Path,
        document: str,
        base_name: str,
        halt_on_error: bool,
        log_path: Path,
    ) -> List[StepReport]:
        steps = prepared.plan.build_steps
        reports: List[StepReport] = []
        with AggregateLog(log_path) as build_log:
            for index, step in enumerate(steps, start=1):
                build_log.banner(index, len(steps), step.id)
                try:
                    report = self._execute_step(
                        step,
                        index=index,
                        command=prepared.command_for(step, document, base_name),
                        working_directory=working_directory,
                        base_name=base_name,
                        halt_on_error=halt_on_error,
                    )
                finally:
                    step_log = step.log_file_name(base_name)
                    if step_log is not None:
                        build_log.append_file(working_directory / step_log)
                reports.append(report)
        return reports

    def _execute_step(
        self,
        step: StepDefinition,
        *,
        index: int,
        command: List[str],
        working_directory: Path,
        base_name: str,
        halt_on_error: bool,
    ) -> StepReport:
        prefix = f"[texbuild][{step.id}]"
        self._console.info(f"[texbuild] execution: {step.id}")
        self._console.info(self._command_runner.format_command(command))

        try:
            result = self._command_runner.run(
                command,
                cwd=working_directory,
                check=False,
                note=step.id,
                on_stdout=lambda line: self._console.debug(f"{prefix} {line}"),
                on_stderr=lambda line: self._console.error(f"{prefix} {line}"),
            )
        except OSError as exc:
            if step.optional:
                self._console.info(f"[texbuild] execution skipped: {step.id}")
                return StepReport(index=index, step_id=step.id, outcome=StepOutcome.SKIPPED)
            raise StepExecutionFailure(step.id, None, f"Execution of step {step.id} could not be started: {exc}") from exc

        exit_code = result.returncode
        if exit_code == 0:
            return StepReport(index=index, step_id=step.id, outcome=StepOutcome.SUCCEEDED, exit_code=0)

        if not (working_directory / step.input_file_name(base_name)).exists():
            self._console.info(f"[texbuild] execution skipped: {step.id}")
            return StepReport(index=index, step_id=step.id, outcome=StepOutcome.SKIPPED, exit_code=exit_code)

        if halt_on_error:
            raise StepExecutionFailure(step.id, exit_code)

        self._console.info(f"[texbuild] execution finished with exit code={exit_code}: {step.id}")
        return StepReport(
            index=index,
            step_id=step.id,
            outcome=StepOutcome.COMPLETED_WITH_ERRORS,
            exit_code=exit_code,
        )

    def _publish(self, config: BuildConfiguration, working_directory: Path, base_name: str) -> Path:
        output = working_directory / f"{base_name}.{config.output_format}"
        if not output.is_file():
            raise StepExecutionFailure(
                "publish",
                None,
                f"The build did not produce the output file {output.name}.",
            )
        artifact = config.target_path / config.artifact_name
        try:
            artifact.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(output, artifact)
        except OSError as exc:
            artifact.unlink(missing_ok=True)
            raise MergeIOError(artifact, f"could not copy output file {output}: {exc}") from exc
        self._console.info(f"[texbuild] artifact: {artifact}")
        return artifact

    def _discard_previous_artifact(self, config: BuildConfiguration) -> None:
        artifact = config.target_path / config.artifact_name
        try:
            artifact.unlink(missing_ok=True)
        except OSError as exc:
            raise MergeIOError(artifact, f"could not remove previous artifact: {exc}") from exc

    def _remove_working_directory(self, working_directory: Path) -> None:
        if not working_directory.exists():
            return
        try:
            shutil.rmtree(working_directory)
        except OSError as exc:
            self._console.warn(f"Could not delete directory {working_directory}: {exc}")


__all__ = [
    "BUILD_LOG_NAME",
    "BuildEngine",
    "BuildResult",
    "PreparedBuild",
    "StepOutcome",
    "StepReport",
]
