"""In-process execution registry.

Tracks each workflow's execution from start to stop and tells subscribers
when an execution stops, the way a managed state-machine service publishes
execution status changes. It also owns the hard ceiling on execution time.
"""

import json
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from inkstream.core.config import Settings, get_settings
from inkstream.core.logging import get_logger
from inkstream.models.events import ExecutionStatus, ExecutionSummary, TerminalSignal
from inkstream.models.workflow import WorkflowRecord, utcnow
from inkstream.storage.base import WorkflowStore

logger = get_logger(__name__)

Subscriber = Callable[[TerminalSignal], Awaitable[Any]]

TIMEOUT_ERROR = "States.Timeout"
TIMEOUT_CAUSE = "Execution exceeded its time limit"
ABORT_ERROR = "Execution.Aborted"


@dataclass
class _Execution:
    execution_id: str
    input: str
    status: ExecutionStatus
    started_at: datetime
    stopped_at: datetime | None = None
    error: str | None = None
    cause: str | None = None

    def summary(self) -> ExecutionSummary:
        return ExecutionSummary(
            status=self.status,
            started_at=self.started_at,
            stopped_at=self.stopped_at,
            error=self.error,
            cause=self.cause,
        )


class ExecutionRegistry:
    """Registry of workflow executions keyed by workflow id.

    Running executions are tracked until they stop. Only the most recent
    ``execution_history_size`` stopped executions are kept for status
    lookups.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: WorkflowStore | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            settings: Application settings
            store: Workflow store swept for overdue records this process
                never started, e.g. after a restart
        """
        self._settings = settings or get_settings()
        self._store = store
        self._executions: dict[str, _Execution] = {}
        self._stopped: deque[str] = deque()
        self._subscribers: list[Subscriber] = []

    @property
    def tracked_count(self) -> int:
        """Number of executions currently held, running or recently stopped."""
        return len(self._executions)

    def subscribe(self, subscriber: Subscriber) -> None:
        """Receive a signal every time an execution stops."""
        self._subscribers.append(subscriber)

    def start(
        self,
        execution_id: str,
        payload: dict[str, Any],
        now: datetime | None = None,
    ) -> None:
        """Record the start of an execution with its JSON input."""
        self._executions[execution_id] = _Execution(
            execution_id=execution_id,
            input=json.dumps(payload),
            status=ExecutionStatus.RUNNING,
            started_at=now or utcnow(),
        )

    def describe(self, execution_id: str) -> ExecutionSummary | None:
        """Summary of an execution, or None if it is unknown."""
        execution = self._executions.get(execution_id)
        return execution.summary() if execution else None

    def mark_waiting(self, execution_id: str) -> None:
        """Note that the execution is suspended on an external job."""
        self._set_active(execution_id, ExecutionStatus.WAITING)

    def mark_running(self, execution_id: str) -> None:
        """Note that a suspended execution resumed."""
        self._set_active(execution_id, ExecutionStatus.RUNNING)

    def _set_active(self, execution_id: str, status: ExecutionStatus) -> None:
        execution = self._executions.get(execution_id)
        if execution is not None and not execution.status.is_stopped:
            execution.status = status

    async def stop(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: str | None = None,
        cause: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Stop an execution and publish its terminal signal.

        Returns:
            False if the execution is unknown or already stopped
        """
        execution = self._executions.get(execution_id)
        if execution is None or execution.status.is_stopped:
            return False

        execution.status = status
        execution.stopped_at = now or utcnow()
        execution.error = error
        execution.cause = cause

        logger.info(
            "Execution stopped",
            execution_id=execution_id,
            status=status.value,
            error=error,
        )

        signal = TerminalSignal(
            execution_id=execution_id,
            status=status,
            input=execution.input,
            error=error,
            cause=cause,
            stopped_at=execution.stopped_at,
        )
        await self._publish(signal)
        self._retire(execution_id)
        return True

    def _retire(self, execution_id: str) -> None:
        self._stopped.append(execution_id)
        while len(self._stopped) > self._settings.execution_history_size:
            self._executions.pop(self._stopped.popleft(), None)

    async def _publish(self, signal: TerminalSignal) -> None:
        for subscriber in self._subscribers:
            try:
                await subscriber(signal)
            except Exception:
                logger.exception(
                    "Terminal signal subscriber failed",
                    execution_id=signal.execution_id,
                )

    async def abort(self, execution_id: str, cause: str | None = None) -> bool:
        """Stop a running execution as ABORTED."""
        return await self.stop(execution_id, ExecutionStatus.ABORTED, ABORT_ERROR, cause)

    async def expire_overdue(self, now: datetime | None = None) -> list[str]:
        """Time out every execution older than the execution ceiling.

        Executions this registry tracks are stopped as TIMED_OUT. When a
        store is attached, active records it never started are swept too and
        get a TIMED_OUT signal of their own.

        Returns:
            Ids of the workflows that timed out
        """
        now = now or utcnow()
        ceiling = timedelta(seconds=self._settings.execution_timeout_seconds)
        overdue = [
            execution.execution_id
            for execution in self._executions.values()
            if not execution.status.is_stopped and now - execution.started_at >= ceiling
        ]

        expired = []
        for execution_id in overdue:
            stopped = await self.stop(
                execution_id,
                ExecutionStatus.TIMED_OUT,
                TIMEOUT_ERROR,
                TIMEOUT_CAUSE,
                now=now,
            )
            if stopped:
                expired.append(execution_id)

        if self._store is not None:
            for record in await self._store.list_overdue(now - ceiling):
                if record.workflow_id in self._executions:
                    continue
                await self._publish(self._orphan_timeout(record, now))
                expired.append(record.workflow_id)
        return expired

    @staticmethod
    def _orphan_timeout(record: WorkflowRecord, now: datetime) -> TerminalSignal:
        logger.info(
            "Untracked workflow exceeded its time limit",
            workflow_id=record.workflow_id,
            user_id=record.user_id,
            status=record.status.value,
        )
        return TerminalSignal(
            execution_id=record.workflow_id,
            status=ExecutionStatus.TIMED_OUT,
            input=json.dumps({"userId": record.user_id, "workflowId": record.workflow_id}),
            error=TIMEOUT_ERROR,
            cause=TIMEOUT_CAUSE,
            stopped_at=now,
        )
