"""Pipeline definition, step outcomes and the next-step decision."""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum

from inkstream.core.exceptions import InkstreamError, WorkflowStateError
from inkstream.models.workflow import (
    OUTPUT_ARTIFACTS,
    WorkflowParameters,
    WorkflowRecord,
    WorkflowStatus,
)

EXTRACTED_TEXT = "extracted_text"


class StepName(StrEnum):
    """Steps of the processing pipeline."""

    EXTRACT_TEXT = "extract_text"
    FORMAT_TEXT = "format_text"
    TRANSLATE_TEXT = "translate_text"
    CONVERT_TO_SPEECH = "convert_to_speech"


@dataclass(frozen=True)
class StepDefinition:
    """Definition of a pipeline step."""

    name: StepName
    description: str
    running_status: WorkflowStatus
    error_label: str
    # Emitted only when another step follows; the last step goes straight to SUCCEEDED
    complete_status: WorkflowStatus | None = None
    condition: Callable[[WorkflowParameters], bool] | None = None
    timeout_seconds: float | None = None

    def is_enabled(self, params: WorkflowParameters) -> bool:
        """Check if this step runs for the given parameters."""
        if self.condition is None:
            return True
        return self.condition(params)

    def timeout_for(self, ceiling: float) -> float:
        """Time the step may run, never above ``ceiling``."""
        if self.timeout_seconds is None:
            return ceiling
        return min(self.timeout_seconds, ceiling)


PIPELINE: tuple[StepDefinition, ...] = (
    StepDefinition(
        name=StepName.EXTRACT_TEXT,
        description="Extract text from the submitted document",
        running_status=WorkflowStatus.EXTRACTING_TEXT,
        error_label="ExtractTextError",
        # Submitting the job, not waiting for it
        timeout_seconds=30.0,
    ),
    StepDefinition(
        name=StepName.FORMAT_TEXT,
        description="Format the extracted text",
        running_status=WorkflowStatus.FORMATTING_TEXT,
        error_label="FormatTextError",
        complete_status=WorkflowStatus.TEXT_FORMATTING_COMPLETE,
    ),
    StepDefinition(
        name=StepName.TRANSLATE_TEXT,
        description="Translate the formatted text",
        running_status=WorkflowStatus.TRANSLATING,
        error_label="TranslateTextError",
        complete_status=WorkflowStatus.TRANSLATION_COMPLETE,
        condition=lambda params: params.translate,
    ),
    StepDefinition(
        name=StepName.CONVERT_TO_SPEECH,
        description="Synthesize speech from the final text",
        running_status=WorkflowStatus.CONVERTING_TO_SPEECH,
        error_label="ConvertToSpeechError",
        condition=lambda params: params.speech,
    ),
)


def get_step(name: StepName | str) -> StepDefinition:
    """Look up a step by name.

    Raises:
        WorkflowStateError: If no step has that name
    """
    for step in PIPELINE:
        if step.name == name:
            return step
    raise WorkflowStateError(f"Unknown step: {name}")


def remaining_steps(
    params: WorkflowParameters,
    completed: StepName | None,
) -> StepDefinition | None:
    """Next enabled step after ``completed``, or None when the workflow is done.

    ``completed=None`` asks for the first step.
    """
    start = 0
    if completed is not None:
        start = PIPELINE.index(get_step(completed)) + 1
    for step in PIPELINE[start:]:
        if step.is_enabled(params):
            return step
    return None


@dataclass(frozen=True)
class Continue:
    """The step finished; ``fragment`` holds the artifact references it produced."""

    fragment: dict[str, str] = field(default_factory=dict)

    def persistable(self) -> dict[str, str]:
        """Part of the fragment that belongs in the workflow record."""
        return {k: v for k, v in self.fragment.items() if k in OUTPUT_ARTIFACTS}


@dataclass(frozen=True)
class Suspend:
    """The step started an external job and waits for its completion signal."""

    job_id: str
    input_ref: str


@dataclass(frozen=True)
class Fail:
    """The step failed."""

    error: InkstreamError


StepOutcome = Continue | Suspend | Fail


@dataclass(frozen=True)
class WorkflowContext:
    """Accumulated state threaded from step to step."""

    user_id: str
    workflow_id: str
    parameters: WorkflowParameters
    artifacts: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: WorkflowRecord, **extra: str) -> "WorkflowContext":
        """Rebuild the context of a persisted workflow."""
        artifacts = {"original_file": record.artifact_paths.original_file}
        artifacts.update(record.artifact_paths.outputs())
        artifacts.update(extra)
        return cls(
            user_id=record.user_id,
            workflow_id=record.workflow_id,
            parameters=record.parameters,
            artifacts=artifacts,
        )

    def merge(self, fragment: dict[str, str]) -> "WorkflowContext":
        """Return a context with ``fragment`` added."""
        return replace(self, artifacts={**self.artifacts, **fragment})

    @property
    def original_file(self) -> str:
        return self.artifacts["original_file"]
