"""Reconciles workflow records with executions stopped from outside."""

import json
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from inkstream.core.exceptions import InkstreamError, WorkflowStateError
from inkstream.core.logging import get_logger
from inkstream.models.events import ExecutionStatus, TerminalSignal
from inkstream.models.workflow import StatusPatch, WorkflowStatus
from inkstream.storage.base import WorkflowStore

logger = get_logger(__name__)

TIMED_OUT_ERROR = "Workflow timed out: Execution exceeded timeout limit"
ABORTED_ERROR = "Workflow aborted: Execution was manually stopped"

# Signals the step handlers never see; everything else is already recorded
FORCED_TERMINAL: dict[ExecutionStatus, tuple[WorkflowStatus, str]] = {
    ExecutionStatus.TIMED_OUT: (WorkflowStatus.TIMED_OUT, TIMED_OUT_ERROR),
    ExecutionStatus.ABORTED: (WorkflowStatus.FAILED, ABORTED_ERROR),
}


def user_id_from_input(raw_input: str | None) -> str | None:
    """Owning user id from an execution's JSON input, if present."""
    if not raw_input:
        return None
    try:
        payload = json.loads(raw_input)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    user_id = payload.get("userId")
    return user_id if isinstance(user_id, str) and user_id else None


class TerminalEventReconciler:
    """Records forced-terminal execution stops on the workflow record.

    Never raises: a failure here would make the event source redeliver
    the same signal forever.
    """

    def __init__(self, store: WorkflowStore) -> None:
        self._store = store

    async def handle(self, signal: TerminalSignal) -> bool:
        """Apply a terminal signal.

        Returns:
            True if the workflow record was updated
        """
        mapping = FORCED_TERMINAL.get(signal.status)
        if mapping is None:
            logger.debug(
                "Ignoring execution status handled by the workflow",
                execution_id=signal.execution_id,
                status=signal.status.value,
            )
            return False
        status, error = mapping

        user_id = user_id_from_input(signal.input)
        if user_id is None:
            logger.warning(
                "Cannot attribute terminal signal, no userId in execution input",
                execution_id=signal.execution_id,
                status=signal.status.value,
            )
            return False

        try:
            await self._store.append_status(
                user_id,
                signal.execution_id,
                status,
                StatusPatch(error=error),
                expect_active=True,
            )
        except WorkflowStateError as e:
            logger.info(
                "Workflow not updated by terminal signal",
                workflow_id=signal.execution_id,
                user_id=user_id,
                reason=e.message,
            )
            return False
        except InkstreamError as e:
            logger.error(
                "Failed to record terminal signal",
                workflow_id=signal.execution_id,
                user_id=user_id,
                error=str(e),
            )
            return False
        except Exception:
            logger.exception(
                "Unexpected error recording terminal signal",
                workflow_id=signal.execution_id,
                user_id=user_id,
            )
            return False

        logger.info(
            "Workflow status reconciled",
            workflow_id=signal.execution_id,
            user_id=user_id,
            status=status.value,
        )
        return True

    async def handle_event(self, event: Mapping[str, Any]) -> bool:
        """Apply a raw status-change event.

        The event may be wrapped in ``{"detail": ...}``; field names follow
        the execution substrate (``name``, ``status``, ``input``, ``stopDate``).
        """
        detail = event.get("detail", event)
        try:
            signal = TerminalSignal.model_validate(detail)
        except PydanticValidationError as e:
            logger.warning("Ignoring unparsable terminal event", error=str(e))
            return False
        return await self.handle(signal)
