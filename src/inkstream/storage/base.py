"""Storage interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from inkstream.models.jobs import JobToken
from inkstream.models.queries import ListQuery, WorkflowPage
from inkstream.models.workflow import StatusPatch, WorkflowRecord, WorkflowStatus


class WorkflowStore(ABC):
    """Durable store of workflow records, keyed by (user_id, workflow_id)."""

    @abstractmethod
    async def create(self, record: WorkflowRecord) -> WorkflowRecord:
        """Persist a new record.

        Raises:
            WorkflowExistsError: If the key is already taken
        """
        ...

    @abstractmethod
    async def get(self, user_id: str, workflow_id: str) -> WorkflowRecord | None:
        """Load a record, or None if it does not exist."""
        ...

    @abstractmethod
    async def append_status(
        self,
        user_id: str,
        workflow_id: str,
        status: WorkflowStatus,
        patch: StatusPatch | None = None,
        *,
        expect_active: bool = False,
    ) -> WorkflowRecord:
        """Atomically append a status and merge ``patch`` into the record.

        Args:
            user_id: Owner of the workflow
            workflow_id: Workflow identifier
            status: Status to append
            patch: Artifact paths and error to merge
            expect_active: Refuse the update if the record is already terminal

        Returns:
            The updated record

        Raises:
            WorkflowStateError: If the record is missing, or terminal while
                ``expect_active`` is set
        """
        ...

    @abstractmethod
    async def list(self, user_id: str, query: ListQuery | None = None) -> WorkflowPage:
        """List a user's workflows one page at a time.

        Raises:
            ValidationError: On a malformed query or cursor
        """
        ...

    @abstractmethod
    async def list_overdue(self, created_before: datetime) -> list[WorkflowRecord]:
        """Active records of every user created before ``created_before``, oldest first."""
        ...


class JobTokenStore(ABC):
    """Store of job tokens keyed by external job id."""

    @abstractmethod
    async def put(self, token: JobToken) -> None:
        """Persist a token. Tokens are write-once.

        Raises:
            WorkflowStateError: If a token for the job already exists
        """
        ...

    @abstractmethod
    async def get(self, job_id: str) -> JobToken | None:
        """Peek at a token without consuming it."""
        ...

    @abstractmethod
    async def take(self, job_id: str) -> JobToken | None:
        """Delete and return a token; None if absent or already taken."""
        ...

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        """Delete tokens that expired before ``now`` and return the count."""
        ...


class BlobStore(ABC):
    """Store of artifact bytes addressed by reference."""

    @abstractmethod
    async def get(self, ref: str) -> bytes:
        """Read a blob.

        Raises:
            StorageError: If the blob is missing or unreadable
        """
        ...

    @abstractmethod
    async def put(self, ref: str, data: bytes, content_type: str | None = None) -> str:
        """Write a blob and return its reference."""
        ...

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """List blob references under ``prefix``, sorted."""
        ...

    async def get_text(self, ref: str) -> str:
        """Read a blob as UTF-8 text."""
        return (await self.get(ref)).decode("utf-8")

    async def put_text(self, ref: str, text: str) -> str:
        """Write UTF-8 text."""
        return await self.put(ref, text.encode("utf-8"), "text/plain; charset=utf-8")
