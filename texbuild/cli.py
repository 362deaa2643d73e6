"""Command line interface for texbuild."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List
import sys

from core.command_runner import (
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
    install_termination_handler,
)

from .config import BuildConfiguration, find_configuration, load_configuration
from .engine import BuildEngine
from .errors import BuildError, ConfigurationError
from .log import Console
from .pipeline import OUTPUT_FORMATS, resolve_pipeline
from .steps import StepRegistry


def _make_runner(dry_run: bool) -> CommandRunner:
    return RecordingCommandRunner() if dry_run else SubprocessCommandRunner()


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="texbuild", description="Multi-pass LaTeX document builder")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Configuration file (default: texbuild.toml in the project directory)",
    )
    parser.add_argument(
        "--project-dir",
        "-C",
        type=Path,
        default=None,
        help="Project root directory (default: current directory)",
    )
    parser.add_argument(
        "--log",
        "-l",
        choices=list(Console.LEVELS),
        default="info",
        help="Set log level (default: info)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Build the document")
    build_parser.add_argument("--format", "-f", choices=OUTPUT_FORMATS, help="Override the output format")
    build_parser.add_argument("--bin-dir", help="Bin directory of the TeX distribution")
    build_parser.add_argument("--keep", action="store_true", help="Keep intermediate files")
    build_parser.add_argument(
        "--no-halt-on-error",
        action="store_true",
        help="Continue when a tool exits non-zero although its input exists",
    )
    build_parser.add_argument("--dry-run", "-n", action="store_true", help="Print commands instead of running them")

    plan_parser = subparsers.add_parser("plan", help="Show the resolved pipeline")
    plan_parser.add_argument("--format", "-f", choices=OUTPUT_FORMATS, help="Override the output format")

    subparsers.add_parser("steps", help="List the available steps")

    return parser.parse_args(list(argv))


def _load(args: Namespace) -> BuildConfiguration:
    project_dir = (args.project_dir or Path.cwd()).expanduser()
    config_path = args.config or find_configuration(project_dir)
    config = load_configuration(config_path, project_dir=project_dir)
    if getattr(args, "format", None):
        config.output_format = args.format
    if getattr(args, "bin_dir", None):
        config.bin_directory = args.bin_dir
    if getattr(args, "keep", False):
        config.keep_intermediate_files = True
    if getattr(args, "no_halt_on_error", False):
        config.halt_on_error = False
    return config


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    console = Console(args.log)

    try:
        config = _load(args)
        if args.command == "build":
            return _handle_build(args, config, console)
        if args.command == "plan":
            return _handle_plan(config)
        if args.command == "steps":
            return _handle_steps(config)
    except ConfigurationError as exc:
        console.error(str(exc))
        return 2
    except BuildError as exc:
        console.error(str(exc))
        return 1
    raise ValueError(f"Unknown command: {args.command}")


def _handle_build(args: Namespace, config: BuildConfiguration, console: Console) -> int:
    install_termination_handler()
    runner = _make_runner(args.dry_run)
    engine = BuildEngine(console=console, command_runner=runner)
    result = engine.build(config, dry_run=args.dry_run)

    if isinstance(runner, RecordingCommandRunner):
        for line in runner.iter_formatted(workspace=result.working_directory):
            print(line)
    for report in result.reports:
        console.debug(f"[texbuild] step {report.index} {report.step_id}: {report.outcome.value}")
    if result.artifact is not None:
        print(result.artifact)
    return 0


def _handle_plan(config: BuildConfiguration) -> int:
    plan = resolve_pipeline(
        config.output_format,
        config.typeset_steps,
        config.build_steps,
        config.steps,
        index_style_file=config.index_style_file,
    )
    print(f"Output format: {config.output_format}")
    print(f"Typeset steps: {', '.join(step.id for step in plan.typeset_steps)}")
    print("Build steps:")
    width = len(str(len(plan.build_steps)))
    for index, step in enumerate(plan.build_steps, start=1):
        command = " ".join([step.executable_name("posix"), step.arguments]).strip()
        print(f"  {index:>{width}}. {step.id:<24} {command}")
    return 0


def _handle_steps(config: BuildConfiguration) -> int:
    registry = StepRegistry.from_definitions(config.steps)
    rows: List[dict[str, str]] = []
    for step in sorted(registry.definitions(), key=lambda item: item.id):
        rows.append(
            {
                "id": step.id,
                "executable": step.executable_name("posix"),
                "input": step.input_extension,
                "log": step.log_extension or "-",
                "optional": "yes" if step.optional else "no",
                "arguments": step.arguments,
            }
        )

    headers = ["id", "executable", "input", "log", "optional", "arguments"]
    widths = {key: max(len(key), *(len(row[key]) for row in rows)) for key in headers}

    def _format(row: dict[str, str]) -> str:
        return "  ".join(row[key].ljust(widths[key]) for key in headers).rstrip()

    print(_format({key: key for key in headers}))
    for row in rows:
        print(_format(row))
    return 0


__all__ = ["main"]
