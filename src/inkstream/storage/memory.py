"""In-memory storage backends for testing and local runs."""

from __future__ import annotations

from datetime import datetime

from inkstream.core.exceptions import (
    StorageError,
    WorkflowExistsError,
    WorkflowStateError,
)
from inkstream.models.jobs import JobToken
from inkstream.models.queries import DEFAULT_MAX_LIMIT, ListQuery, WorkflowPage
from inkstream.models.workflow import StatusPatch, WorkflowRecord, WorkflowStatus
from inkstream.storage.base import BlobStore, JobTokenStore, WorkflowStore
from inkstream.storage.pagination import decode_cursor, paginate


class MemoryWorkflowStore(WorkflowStore):
    """In-memory workflow store.

    Reads and writes copy records so callers never share state with the
    store. Every operation completes without yielding to the event loop,
    which makes each append atomic.
    """

    def __init__(self, max_limit: int = DEFAULT_MAX_LIMIT) -> None:
        """Initialize memory storage."""
        self._records: dict[tuple[str, str], WorkflowRecord] = {}
        self._max_limit = max_limit

    async def create(self, record: WorkflowRecord) -> WorkflowRecord:
        key = (record.user_id, record.workflow_id)
        if key in self._records:
            raise WorkflowExistsError(
                "Workflow already exists",
                workflow_id=record.workflow_id,
            )
        self._records[key] = record.model_copy(deep=True)
        return record

    async def get(self, user_id: str, workflow_id: str) -> WorkflowRecord | None:
        record = self._records.get((user_id, workflow_id))
        return record.model_copy(deep=True) if record else None

    async def append_status(
        self,
        user_id: str,
        workflow_id: str,
        status: WorkflowStatus,
        patch: StatusPatch | None = None,
        *,
        expect_active: bool = False,
    ) -> WorkflowRecord:
        current = self._records.get((user_id, workflow_id))
        if current is None:
            raise WorkflowStateError("Workflow not found", workflow_id=workflow_id)
        if expect_active and current.is_terminal:
            raise WorkflowStateError(
                "Workflow is already terminal",
                workflow_id=workflow_id,
                details={"status": current.status.value, "requested": status.value},
            )

        updated = current.with_status(status, patch)
        self._records[(user_id, workflow_id)] = updated
        return updated.model_copy(deep=True)

    async def list(self, user_id: str, query: ListQuery | None = None) -> WorkflowPage:
        query = query or ListQuery()
        index = query.resolve(self._max_limit)
        after = decode_cursor(query.cursor, index) if query.cursor else None

        candidates = [
            record
            for (owner, _), record in self._records.items()
            if owner == user_id and query.matches(record)
        ]
        items, next_cursor = paginate(candidates, index, query.limit, after)
        return WorkflowPage(
            items=[item.model_copy(deep=True) for item in items],
            next_cursor=next_cursor,
        )

    async def list_overdue(self, created_before: datetime) -> list[WorkflowRecord]:
        overdue = [
            record
            for record in self._records.values()
            if not record.is_terminal and record.created_at < created_before
        ]
        overdue.sort(key=lambda record: record.created_at)
        return [record.model_copy(deep=True) for record in overdue]

    def clear(self) -> None:
        """Clear all records from memory."""
        self._records.clear()


class MemoryJobTokenStore(JobTokenStore):
    """In-memory job token store."""

    def __init__(self) -> None:
        self._tokens: dict[str, JobToken] = {}

    async def put(self, token: JobToken) -> None:
        if token.job_id in self._tokens:
            raise WorkflowStateError(
                "Job token already exists",
                workflow_id=token.workflow_id,
                details={"job_id": token.job_id},
            )
        self._tokens[token.job_id] = token

    async def get(self, job_id: str) -> JobToken | None:
        return self._tokens.get(job_id)

    async def take(self, job_id: str) -> JobToken | None:
        return self._tokens.pop(job_id, None)

    async def delete_expired(self, now: datetime) -> int:
        expired = [job_id for job_id, token in self._tokens.items() if token.is_expired(now)]
        for job_id in expired:
            del self._tokens[job_id]
        return len(expired)


class MemoryBlobStore(BlobStore):
    """In-memory blob store."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def get(self, ref: str) -> bytes:
        try:
            return self._blobs[ref]
        except KeyError as e:
            raise StorageError("Blob not found", details={"ref": ref}) from e

    async def put(self, ref: str, data: bytes, content_type: str | None = None) -> str:
        self._blobs[ref] = bytes(data)
        return ref

    async def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._blobs if k.startswith(prefix))

    def clear(self) -> None:
        """Clear all blobs from memory."""
        self._blobs.clear()
