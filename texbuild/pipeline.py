"""Resolution of the typeset and build pipelines."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from .errors import InvalidFormatError, UnknownStepError
from .steps import StepDefinition, StepRegistry

TYPESET_PLACEHOLDER = "TYPESET"

FORMAT_DVI = "dvi"
FORMAT_PS = "ps"
FORMAT_PDF = "pdf"
OUTPUT_FORMATS = (FORMAT_DVI, FORMAT_PS, FORMAT_PDF)

DEFAULT_TYPESET_STEPS: Dict[str, Tuple[str, ...]] = {
    FORMAT_DVI: ("typeset",),
    FORMAT_PS: ("typeset", "dvi-to-ps"),
    FORMAT_PDF: ("pdf-typeset",),
}

DEFAULT_BUILD_STEPS: Tuple[str, ...] = (
    TYPESET_PLACEHOLDER,
    "bib-process",
    "make-index",
    "make-index-nomenclature",
    TYPESET_PLACEHOLDER,
    TYPESET_PLACEHOLDER,
)


@dataclass(frozen=True, slots=True)
class BuildPlan:
    typeset_steps: Tuple[StepDefinition, ...]
    build_steps: Tuple[StepDefinition, ...]

    @property
    def executables(self) -> List[StepDefinition]:
        """Distinct steps of the plan in order of first appearance."""
        seen: set[str] = set()
        unique: List[StepDefinition] = []
        for step in (*self.typeset_steps, *self.build_steps):
            if step.id not in seen:
                seen.add(step.id)
                unique.append(step)
        return unique

    def step_ids(self) -> List[str]:
        return [step.id for step in self.build_steps]


def validate_output_format(output_format: str | None) -> str:
    if not output_format or output_format not in OUTPUT_FORMATS:
        raise InvalidFormatError(output_format)
    return output_format


def _lookup(
    registry: StepRegistry,
    step_ids: Iterable[str],
    *,
    origin: str,
    index_style_file: str | None,
    resolved: Dict[str, StepDefinition],
) -> List[StepDefinition]:
    steps: List[StepDefinition] = []
    for step_id in step_ids:
        step = resolved.get(step_id)
        if step is None:
            definition = registry.get(step_id)
            if definition is None:
                raise UnknownStepError(step_id, origin)
            step = definition.with_style(index_style_file)
            resolved[step_id] = step
        steps.append(step)
    return steps


def resolve_pipeline(
    output_format: str | None,
    typeset_step_ids: Sequence[str] | None = None,
    build_step_ids: Sequence[str] | None = None,
    step_definitions: Iterable[StepDefinition] | None = None,
    *,
    index_style_file: str | None = None,
    registry: StepRegistry | None = None,
) -> BuildPlan:
    """Resolve the typeset sub-pipeline and the full build pipeline.

    The typeset sub-pipeline defaults by output format and is expanded into
    the build pipeline wherever ``TYPESET`` appears. User step definitions
    replace built-in steps of the same id. Steps carrying a ``%style``
    placeholder are resolved into build-scoped copies; *registry* is never
    modified.
    """
    output_format = validate_output_format(output_format)
    if registry is None:
        registry = StepRegistry.from_definitions(step_definitions)
    elif step_definitions:
        registry = registry.copy()
        registry.merge({definition.id: definition for definition in step_definitions})

    if typeset_step_ids is None:
        typeset_step_ids = DEFAULT_TYPESET_STEPS[output_format]
    if build_step_ids is None:
        build_step_ids = DEFAULT_BUILD_STEPS

    resolved: Dict[str, StepDefinition] = {}
    typeset_steps = _lookup(
        registry,
        typeset_step_ids,
        origin="typeset_steps",
        index_style_file=index_style_file,
        resolved=resolved,
    )

    build_steps: List[StepDefinition] = []
    for step_id in build_step_ids:
        if step_id == TYPESET_PLACEHOLDER:
            build_steps.extend(typeset_steps)
        else:
            build_steps.extend(
                _lookup(
                    registry,
                    [step_id],
                    origin="build_steps",
                    index_style_file=index_style_file,
                    resolved=resolved,
                )
            )

    return BuildPlan(typeset_steps=tuple(typeset_steps), build_steps=tuple(build_steps))


__all__ = [
    "BuildPlan",
    "DEFAULT_BUILD_STEPS",
    "DEFAULT_TYPESET_STEPS",
    "OUTPUT_FORMATS",
    "TYPESET_PLACEHOLDER",
    "resolve_pipeline",
    "validate_output_format",
]
