"""Execution-level events and views."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from inkstream.models.workflow import WorkflowRecord, WorkflowStatus, utcnow


class ExecutionStatus(StrEnum):
    """Status of an execution as seen by the execution substrate."""

    RUNNING = "RUNNING"
    WAITING = "WAITING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ABORTED = "ABORTED"

    @property
    def is_stopped(self) -> bool:
        """Whether the execution has stopped."""
        return self not in (ExecutionStatus.RUNNING, ExecutionStatus.WAITING)


class TerminalSignal(BaseModel):
    """Stop notification published by the execution substrate."""

    model_config = ConfigDict(populate_by_name=True)

    execution_id: str = Field(..., alias="name", description="Workflow id of the execution")
    status: ExecutionStatus
    input: str | None = Field(default=None, description="Raw JSON input of the execution")
    error: str | None = None
    cause: str | None = None
    stopped_at: datetime = Field(default_factory=utcnow, alias="stopDate")


class ExecutionSummary(BaseModel):
    """Live execution details merged into a workflow view."""

    status: ExecutionStatus
    started_at: datetime
    stopped_at: datetime | None = None
    error: str | None = None
    cause: str | None = None


class WorkflowDetails(WorkflowRecord):
    """A workflow record combined with its live execution."""

    execution: ExecutionSummary | None = None

    @classmethod
    def combine(
        cls,
        record: WorkflowRecord,
        execution: ExecutionSummary | None,
    ) -> "WorkflowDetails":
        """Merge ``execution`` into ``record``.

        An execution that stopped abnormally while the record still looks
        active is reported with the execution's status and error.
        """
        details = cls(**record.model_dump(), execution=execution)
        if execution is None or record.is_terminal:
            return details

        if execution.status is ExecutionStatus.TIMED_OUT:
            details.status = WorkflowStatus.TIMED_OUT
        elif execution.status in (ExecutionStatus.FAILED, ExecutionStatus.ABORTED):
            details.status = WorkflowStatus.FAILED
        if execution.error:
            details.error = execution.error
        return details
