"""SQLite storage backends."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from inkstream.core.exceptions import (
    StorageError,
    WorkflowExistsError,
    WorkflowStateError,
)
from inkstream.core.logging import get_logger
from inkstream.models.jobs import JobToken
from inkstream.models.queries import DEFAULT_MAX_LIMIT, ListIndex, ListQuery, WorkflowPage
from inkstream.models.workflow import (
    StatusCategory,
    StatusPatch,
    WorkflowRecord,
    WorkflowStatus,
    format_timestamp,
)
from inkstream.storage.base import JobTokenStore, WorkflowStore
from inkstream.storage.pagination import decode_cursor, encode_cursor, index_value, sort_key

logger = get_logger(__name__)

_INDEX_COLUMNS: dict[ListIndex, str] = {
    ListIndex.CREATED_AT: "created_at",
    ListIndex.UPDATED_AT: "updated_at",
    ListIndex.STATUS: "status",
    ListIndex.CATEGORY: "category_created_at",
}

APPEND_MAX_ATTEMPTS = 5


def _connect(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class _SQLiteBase(ABC):
    """Shared connection handling.

    A single connection is shared between worker threads and serialized
    with a lock; queries run through ``asyncio.to_thread``.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._conn = _connect(self.db_path)
        self._lock = threading.Lock()
        self._ensure_schema()

    @abstractmethod
    def _ensure_schema(self) -> None:
        """Create the backend's tables if they do not exist."""
        ...

    async def _run(self, func, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(self._locked, func, *args)
        except sqlite3.Error as e:
            raise StorageError(
                f"SQLite operation failed: {e}",
                details={"path": self.db_path},
            ) from e

    def _locked(self, func, *args: Any) -> Any:
        with self._lock:
            return func(*args)

    def close(self) -> None:
        """Close the underlying connection."""
        self._conn.close()


class SQLiteWorkflowStore(_SQLiteBase, WorkflowStore):
    """Workflow store backed by a SQLite table.

    Each row carries the record as JSON next to the attributes listings
    order by. Appends are optimistic updates guarded by a version column.
    """

    def __init__(self, db_path: str | Path, max_limit: int = DEFAULT_MAX_LIMIT) -> None:
        self._max_limit = max_limit
        super().__init__(db_path)

    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                user_id TEXT NOT NULL,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                status_category TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                category_created_at TEXT NOT NULL,
                version INTEGER NOT NULL,
                body TEXT NOT NULL,
                PRIMARY KEY (user_id, workflow_id)
            )
            """
        )
        for column in ("created_at", "updated_at", "status", "category_created_at"):
            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_workflows_{column} "
                f"ON workflows (user_id, {column}, workflow_id)"
            )
        self._conn.commit()

    @staticmethod
    def _columns(record: WorkflowRecord) -> tuple[str, ...]:
        return (
            record.status.value,
            record.status_category.value,
            format_timestamp(record.created_at),
            format_timestamp(record.updated_at),
            index_value(record, ListIndex.CATEGORY),
            record.model_dump_json(),
        )

    # ------------------------------------------------------------------
    # Synchronous helpers, run in a worker thread
    def _insert(self, record: WorkflowRecord) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO workflows (
                    user_id, workflow_id, status, status_category, created_at,
                    updated_at, category_created_at, version, body
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (record.user_id, record.workflow_id, *self._columns(record)),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            raise WorkflowExistsError(
                "Workflow already exists",
                workflow_id=record.workflow_id,
            ) from e

    def _select(self, user_id: str, workflow_id: str) -> sqlite3.Row | None:
        return self._conn.execute(
            "SELECT body, version FROM workflows WHERE user_id = ? AND workflow_id = ?",
            (user_id, workflow_id),
        ).fetchone()

    def _append(
        self,
        user_id: str,
        workflow_id: str,
        status: WorkflowStatus,
        patch: StatusPatch | None,
        expect_active: bool,
    ) -> WorkflowRecord:
        for attempt in range(1, APPEND_MAX_ATTEMPTS + 1):
            row = self._select(user_id, workflow_id)
            if row is None:
                raise WorkflowStateError("Workflow not found", workflow_id=workflow_id)

            current = WorkflowRecord.model_validate_json(row["body"])
            if expect_active and current.is_terminal:
                raise WorkflowStateError(
                    "Workflow is already terminal",
                    workflow_id=workflow_id,
                    details={"status": current.status.value, "requested": status.value},
                )

            updated = current.with_status(status, patch)
            cur = self._conn.execute(
                """
                UPDATE workflows
                SET status = ?, status_category = ?, created_at = ?, updated_at = ?,
                    category_created_at = ?, body = ?, version = version + 1
                WHERE user_id = ? AND workflow_id = ? AND version = ?
                """,
                (*self._columns(updated), user_id, workflow_id, row["version"]),
            )
            self._conn.commit()
            if cur.rowcount == 1:
                return updated

            logger.debug(
                "Concurrent update detected, retrying append",
                workflow_id=workflow_id,
                attempt=attempt,
            )

        raise StorageError(
            "Failed to append status after concurrent updates",
            details={"workflow_id": workflow_id, "attempts": APPEND_MAX_ATTEMPTS},
        )

    def _select_overdue(self, created_before: datetime) -> list[sqlite3.Row]:
        return self._conn.execute(
            "SELECT body FROM workflows WHERE status_category = ? AND created_at < ? "
            "ORDER BY created_at, workflow_id",
            (StatusCategory.ACTIVE.value, format_timestamp(created_before)),
        ).fetchall()

    def _query(
        self,
        user_id: str,
        index: ListIndex,
        query: ListQuery,
        after: tuple[str, str] | None,
    ) -> list[sqlite3.Row]:
        column = _INDEX_COLUMNS[index]
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]

        if query.status is not None:
            clauses.append("status = ?")
            params.append(str(query.status))
        if query.category is not None:
            clauses.append("status_category = ?")
            params.append(str(query.category))
        if after is not None:
            clauses.append(f"({column} < ? OR ({column} = ? AND workflow_id < ?))")
            params.extend([after[0], after[0], after[1]])

        sql = (
            f"SELECT body FROM workflows WHERE {' AND '.join(clauses)} "
            f"ORDER BY {column} DESC, workflow_id DESC"
        )
        if query.limit is not None:
            sql += " LIMIT ?"
            params.append(query.limit + 1)
        return self._conn.execute(sql, params).fetchall()

    # ------------------------------------------------------------------
    # Store API
    async def create(self, record: WorkflowRecord) -> WorkflowRecord:
        await self._run(self._insert, record)
        return record

    async def get(self, user_id: str, workflow_id: str) -> WorkflowRecord | None:
        row = await self._run(self._select, user_id, workflow_id)
        if row is None:
            return None
        return WorkflowRecord.model_validate_json(row["body"])

    async def append_status(
        self,
        user_id: str,
        workflow_id: str,
        status: WorkflowStatus,
        patch: StatusPatch | None = None,
        *,
        expect_active: bool = False,
    ) -> WorkflowRecord:
        return await self._run(
            self._append, user_id, workflow_id, status, patch, expect_active
        )

    async def list(self, user_id: str, query: ListQuery | None = None) -> WorkflowPage:
        query = query or ListQuery()
        index = query.resolve(self._max_limit)
        after = decode_cursor(query.cursor, index) if query.cursor else None

        rows = await self._run(self._query, user_id, index, query, after)
        items = [WorkflowRecord.model_validate_json(row["body"]) for row in rows]

        next_cursor = None
        if query.limit is not None and len(items) > query.limit:
            items = items[: query.limit]
            next_cursor = encode_cursor(index, sort_key(items[-1], index))
        return WorkflowPage(items=items, next_cursor=next_cursor)

    async def list_overdue(self, created_before: datetime) -> list[WorkflowRecord]:
        rows = await self._run(self._select_overdue, created_before)
        return [WorkflowRecord.model_validate_json(row["body"]) for row in rows]


class SQLiteJobTokenStore(_SQLiteBase, JobTokenStore):
    """Job token store backed by a SQLite table."""

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS job_tokens (
                job_id TEXT PRIMARY KEY,
                expires_at TEXT NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    def _insert(self, token: JobToken) -> None:
        try:
            self._conn.execute(
                "INSERT INTO job_tokens (job_id, expires_at, body) VALUES (?, ?, ?)",
                (token.job_id, format_timestamp(token.expires_at), token.model_dump_json()),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            raise WorkflowStateError(
                "Job token already exists",
                workflow_id=token.workflow_id,
                details={"job_id": token.job_id},
            ) from e

    def _select(self, job_id: str) -> JobToken | None:
        row = self._conn.execute(
            "SELECT body FROM job_tokens WHERE job_id = ?", (job_id,)
        ).fetchone()
        return JobToken.model_validate_json(row["body"]) if row else None

    def _take(self, job_id: str) -> JobToken | None:
        token = self._select(job_id)
        if token is None:
            return None
        cur = self._conn.execute("DELETE FROM job_tokens WHERE job_id = ?", (job_id,))
        self._conn.commit()
        # Another process consumed it between the read and the delete.
        if cur.rowcount != 1:
            return None
        return token

    def _delete_expired(self, now: datetime) -> int:
        cur = self._conn.execute(
            "DELETE FROM job_tokens WHERE expires_at <= ?",
            (format_timestamp(now),),
        )
        self._conn.commit()
        return cur.rowcount

    async def put(self, token: JobToken) -> None:
        await self._run(self._insert, token)

    async def get(self, job_id: str) -> JobToken | None:
        return await self._run(self._select, job_id)

    async def take(self, job_id: str) -> JobToken | None:
        return await self._run(self._take, job_id)

    async def delete_expired(self, now: datetime) -> int:
        return await self._run(self._delete_expired, now)
