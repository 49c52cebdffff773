"""Data models for Inkstream."""

from inkstream.models.events import (
    ExecutionStatus,
    ExecutionSummary,
    TerminalSignal,
    WorkflowDetails,
)
from inkstream.models.jobs import JobOutcome, JobToken
from inkstream.models.queries import ListIndex, ListQuery, SortBy, WorkflowPage
from inkstream.models.workflow import (
    OUTPUT_ARTIFACTS,
    LANGUAGE_CODES,
    SUPPORTED_LANGUAGES,
    ArtifactPaths,
    StatusCategory,
    StatusHistoryEntry,
    StatusPatch,
    WorkflowParameters,
    WorkflowRecord,
    WorkflowStatus,
    format_timestamp,
    utcnow,
)

__all__ = [
    # Workflow records
    "WorkflowRecord",
    "WorkflowStatus",
    "StatusCategory",
    "StatusHistoryEntry",
    "StatusPatch",
    "WorkflowParameters",
    "ArtifactPaths",
    "OUTPUT_ARTIFACTS",
    "SUPPORTED_LANGUAGES",
    "LANGUAGE_CODES",
    "format_timestamp",
    "utcnow",
    # Job correlation
    "JobToken",
    "JobOutcome",
    # Listings
    "ListQuery",
    "ListIndex",
    "SortBy",
    "WorkflowPage",
    # Executions
    "ExecutionStatus",
    "ExecutionSummary",
    "TerminalSignal",
    "WorkflowDetails",
]
