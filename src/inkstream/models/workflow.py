"""Workflow record models."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from inkstream.core.exceptions import ValidationError

SUPPORTED_LANGUAGES: tuple[str, ...] = (
    "english",
    "spanish",
    "french",
    "german",
    "italian",
    "portuguese",
    "russian",
    "chinese",
    "japanese",
    "korean",
    "arabic",
    "hindi",
    "dutch",
    "polish",
    "swedish",
    "norwegian",
    "danish",
    "finnish",
    "turkish",
    "thai",
)

DEFAULT_LANGUAGE = "english"

LANGUAGE_CODES: dict[str, str] = {
    "en": "english",
    "es": "spanish",
    "fr": "french",
    "de": "german",
    "it": "italian",
    "pt": "portuguese",
    "ru": "russian",
    "zh": "chinese",
    "ja": "japanese",
    "ko": "korean",
    "ar": "arabic",
    "hi": "hindi",
    "nl": "dutch",
    "pl": "polish",
    "sv": "swedish",
    "no": "norwegian",
    "da": "danish",
    "fi": "finnish",
    "tr": "turkish",
    "th": "thai",
}

OUTPUT_ARTIFACTS: tuple[str, ...] = ("formatted_text", "translated_text", "audio_file")


def utcnow() -> datetime:
    """Current time as a tz-aware UTC datetime."""
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp so that lexical order equals chronological order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class StatusCategory(StrEnum):
    """Coarse grouping over workflow statuses."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStatus(StrEnum):
    """Status of a workflow."""

    STARTING = "STARTING"
    EXTRACTING_TEXT = "EXTRACTING_TEXT"
    FORMATTING_TEXT = "FORMATTING_TEXT"
    TEXT_FORMATTING_COMPLETE = "TEXT_FORMATTING_COMPLETE"
    TRANSLATING = "TRANSLATING"
    TRANSLATION_COMPLETE = "TRANSLATION_COMPLETE"
    CONVERTING_TO_SPEECH = "CONVERTING_TO_SPEECH"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition may follow this status."""
        return self in (WorkflowStatus.SUCCEEDED, WorkflowStatus.FAILED, WorkflowStatus.TIMED_OUT)

    @property
    def category(self) -> StatusCategory:
        """Status category used by filtered listings."""
        if self is WorkflowStatus.SUCCEEDED:
            return StatusCategory.COMPLETED
        if self in (WorkflowStatus.FAILED, WorkflowStatus.TIMED_OUT):
            return StatusCategory.FAILED
        return StatusCategory.ACTIVE


class WorkflowParameters(BaseModel):
    """Options chosen at submission time."""

    translate: bool = Field(default=False, description="Translate the formatted text")
    speech: bool = Field(default=False, description="Synthesize speech from the final text")
    target_language: str = Field(default=DEFAULT_LANGUAGE, description="Translation language")

    @field_validator("target_language", mode="before")
    @classmethod
    def _normalize_language(cls, value: Any) -> Any:
        if value is None:
            return DEFAULT_LANGUAGE
        if isinstance(value, str):
            value = value.strip().lower()
            value = LANGUAGE_CODES.get(value, value)
            if value not in SUPPORTED_LANGUAGES:
                raise ValueError(f"unsupported target language: {value!r}")
        return value


class ArtifactPaths(BaseModel):
    """Blob references produced over a workflow's life."""

    original_file: str = Field(..., min_length=1, description="Submitted document")
    formatted_text: str | None = None
    translated_text: str | None = None
    audio_file: str | None = None

    def outputs(self) -> dict[str, str]:
        """Output artifacts that have been produced so far."""
        return {
            key: value
            for key in OUTPUT_ARTIFACTS
            if (value := getattr(self, key)) is not None
        }


class StatusHistoryEntry(BaseModel):
    """One entry of the append-only status log."""

    status: WorkflowStatus
    timestamp: datetime = Field(default_factory=utcnow)
    error: str | None = None


class StatusPatch(BaseModel):
    """Changes applied alongside a status append."""

    artifact_paths: dict[str, str] = Field(default_factory=dict)
    error: str | None = None


class WorkflowRecord(BaseModel):
    """Durable state of one workflow."""

    user_id: str = Field(..., min_length=1)
    workflow_id: str = Field(..., min_length=1)
    status: WorkflowStatus = WorkflowStatus.STARTING
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    parameters: WorkflowParameters = Field(default_factory=WorkflowParameters)
    artifact_paths: ArtifactPaths
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    error: str | None = None

    @classmethod
    def new(
        cls,
        user_id: str,
        workflow_id: str,
        parameters: WorkflowParameters,
        original_file: str,
        now: datetime | None = None,
    ) -> "WorkflowRecord":
        """Create a record in the STARTING state."""
        now = now or utcnow()
        return cls(
            user_id=user_id,
            workflow_id=workflow_id,
            status=WorkflowStatus.STARTING,
            status_history=[StatusHistoryEntry(status=WorkflowStatus.STARTING, timestamp=now)],
            parameters=parameters,
            artifact_paths=ArtifactPaths(original_file=original_file),
            created_at=now,
            updated_at=now,
        )

    @property
    def status_category(self) -> StatusCategory:
        """Category of the current status."""
        return self.status.category

    @property
    def is_terminal(self) -> bool:
        """Whether the workflow has reached a terminal status."""
        return self.status.is_terminal

    def with_status(
        self,
        status: WorkflowStatus,
        patch: StatusPatch | None = None,
        now: datetime | None = None,
    ) -> "WorkflowRecord":
        """Return a copy with ``status`` appended and ``patch`` merged."""
        patch = patch or StatusPatch()
        for key in patch.artifact_paths:
            if key not in OUTPUT_ARTIFACTS:
                raise ValidationError(
                    f"Artifact {key!r} cannot be patched",
                    field="artifact_paths",
                    details={"workflow_id": self.workflow_id},
                )
        now = now or utcnow()
        if now < self.updated_at:
            now = self.updated_at

        updated = self.model_copy(deep=True)
        updated.status_history.append(
            StatusHistoryEntry(status=status, timestamp=now, error=patch.error)
        )
        updated.status = status
        for key, value in patch.artifact_paths.items():
            setattr(updated.artifact_paths, key, value)
        if patch.error is not None:
            updated.error = patch.error
        updated.updated_at = now
        return updated
