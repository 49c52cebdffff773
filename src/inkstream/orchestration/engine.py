"""Workflow orchestrator: sequences steps and records every transition."""

import asyncio
import uuid
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import (
    ExternalServiceError,
    InkstreamError,
    ValidationError,
    WorkflowStateError,
)
from inkstream.core.logging import get_logger
from inkstream.models.events import ExecutionStatus, WorkflowDetails
from inkstream.models.jobs import JobOutcome, JobToken
from inkstream.models.queries import ListQuery, WorkflowPage
from inkstream.models.workflow import (
    StatusPatch,
    WorkflowParameters,
    WorkflowRecord,
    WorkflowStatus,
)
from inkstream.orchestration.callback import CallbackBridge
from inkstream.orchestration.executions import ExecutionRegistry
from inkstream.orchestration.handlers import StepHandlers
from inkstream.orchestration.steps import (
    EXTRACTED_TEXT,
    Continue,
    Fail,
    StepDefinition,
    StepName,
    StepOutcome,
    Suspend,
    WorkflowContext,
    get_step,
    remaining_steps,
)
from inkstream.storage.base import WorkflowStore

logger = get_logger(__name__)


def make_resume_token(step: StepName) -> str:
    """Opaque handle naming the step a suspended workflow waits in."""
    return f"{step.value}:{uuid.uuid4().hex}"


def parse_resume_token(token: str) -> StepDefinition:
    """Step a resume token belongs to.

    Raises:
        WorkflowStateError: If the token names no step
    """
    step_name, _, nonce = token.partition(":")
    if not nonce:
        raise WorkflowStateError("Malformed resume token", details={"token": token})
    return get_step(step_name)


class WorkflowOrchestrator:
    """Runs workflows through the processing pipeline.

    The orchestrator holds no per-workflow state between steps. A workflow
    advances inline until it finishes, fails or suspends on an external
    job; the callback bridge resumes it from the persisted record.
    """

    def __init__(
        self,
        store: WorkflowStore,
        bridge: CallbackBridge,
        handlers: StepHandlers,
        registry: ExecutionRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Workflow record store
            bridge: Callback bridge for suspended steps
            handlers: Step handlers
            registry: Execution registry; a private one is created if omitted
            settings: Application settings
        """
        self._store = store
        self._bridge = bridge
        self._handlers = handlers
        self._settings = settings or get_settings()
        self._registry = registry or ExecutionRegistry(self._settings, store=store)
        self._bridge.set_resume_handler(self.resume)

    @property
    def registry(self) -> ExecutionRegistry:
        return self._registry

    async def start_workflow(
        self,
        user_id: str,
        params: WorkflowParameters | Mapping[str, Any] | None,
        input_ref: str,
        workflow_id: str | None = None,
    ) -> str:
        """Create a workflow and run it until it suspends or stops.

        Step failures end up as a FAILED record, not as an exception.

        Args:
            user_id: Owner of the workflow
            params: Submission options
            input_ref: Blob reference of the submitted document
            workflow_id: Explicit id; a UUID is generated if omitted

        Returns:
            The workflow id

        Raises:
            ValidationError: If the submission is malformed
            WorkflowExistsError: If ``workflow_id`` is already taken
        """
        if not user_id:
            raise ValidationError("userId is required", field="userId")
        if not input_ref:
            raise ValidationError("A document reference is required", field="inputRef")
        parameters = self._parse_parameters(params)

        workflow_id = workflow_id or str(uuid.uuid4())
        record = WorkflowRecord.new(user_id, workflow_id, parameters, input_ref)
        await self._store.create(record)

        self._registry.start(
            workflow_id,
            {
                "userId": user_id,
                "workflowId": workflow_id,
                "originalFile": input_ref,
                "parameters": parameters.model_dump(),
            },
        )
        logger.info(
            "Workflow started",
            workflow_id=workflow_id,
            user_id=user_id,
            translate=parameters.translate,
            speech=parameters.speech,
            target_language=parameters.target_language,
        )

        context = WorkflowContext.from_record(record)
        first = remaining_steps(parameters, None)
        try:
            await self._append(context, first.running_status)
            await self._drive(context, first)
        except WorkflowStateError as e:
            logger.warning("Workflow stopped moving", workflow_id=workflow_id, error=str(e))
        return workflow_id

    @staticmethod
    def _parse_parameters(
        params: WorkflowParameters | Mapping[str, Any] | None,
    ) -> WorkflowParameters:
        if isinstance(params, WorkflowParameters):
            return params
        try:
            return WorkflowParameters.model_validate(dict(params or {}))
        except PydanticValidationError as e:
            first_error = e.errors()[0]
            raise ValidationError(
                f"Invalid workflow parameters: {first_error['msg']}",
                field=".".join(str(part) for part in first_error["loc"]) or None,
            ) from e

    async def resume(self, token: JobToken, outcome: JobOutcome) -> None:
        """Continue a workflow suspended on an external job.

        Raises:
            WorkflowStateError: If the workflow is missing, already terminal
                or not waiting in the token's step
        """
        step = parse_resume_token(token.resume_token)
        record = await self._store.get(token.user_id, token.workflow_id)
        if record is None:
            raise WorkflowStateError("Workflow not found", workflow_id=token.workflow_id)
        if record.is_terminal:
            raise WorkflowStateError(
                "Workflow is already terminal",
                workflow_id=token.workflow_id,
                details={"status": record.status.value},
            )
        if record.status is not step.running_status:
            raise WorkflowStateError(
                "Workflow is not waiting on this job",
                workflow_id=token.workflow_id,
                details={"status": record.status.value, "step": step.name.value},
            )

        self._registry.mark_running(record.workflow_id)
        context = WorkflowContext.from_record(record)
        if outcome.success and outcome.artifact_ref:
            result: StepOutcome = Continue({EXTRACTED_TEXT: outcome.artifact_ref})
        else:
            result = Fail(
                ExternalServiceError(
                    outcome.describe_failure(),
                    service="extraction",
                    details={"job_id": token.job_id},
                )
            )

        try:
            await self._drive(context, step, result)
        except WorkflowStateError as e:
            logger.warning(
                "Workflow stopped moving",
                workflow_id=record.workflow_id,
                error=str(e),
            )

    async def get_workflow(self, user_id: str, workflow_id: str) -> WorkflowDetails | None:
        """Load a workflow merged with its live execution, or None."""
        record = await self._store.get(user_id, workflow_id)
        if record is None:
            return None
        return WorkflowDetails.combine(record, self._registry.describe(workflow_id))

    async def list_workflows(self, user_id: str, query: ListQuery | None = None) -> WorkflowPage:
        """List a user's workflows.

        Raises:
            ValidationError: On a malformed query or cursor
        """
        return await self._store.list(user_id, query)

    async def _drive(
        self,
        context: WorkflowContext,
        step: StepDefinition,
        outcome: StepOutcome | None = None,
    ) -> None:
        """Run ``step`` and its successors until the workflow suspends or stops.

        ``step``'s running status must already be recorded. A given
        ``outcome`` is used in place of running ``step``.
        """
        while True:
            if outcome is None:
                outcome = await self._execute(step, context)

            if isinstance(outcome, Suspend):
                await self._suspend(context, step, outcome)
                return
            if isinstance(outcome, Fail):
                await self._fail(context, step, outcome.error)
                return

            context = context.merge(outcome.fragment)
            patch = StatusPatch(artifact_paths=outcome.persistable())
            next_step = remaining_steps(context.parameters, step.name)

            if next_step is None:
                await self._append(context, WorkflowStatus.SUCCEEDED, patch)
                await self._registry.stop(context.workflow_id, ExecutionStatus.SUCCEEDED)
                logger.info(
                    "Workflow succeeded",
                    workflow_id=context.workflow_id,
                    user_id=context.user_id,
                )
                return

            if step.complete_status is not None:
                await self._append(context, step.complete_status, patch)
                patch = None
            await self._append(context, next_step.running_status, patch)
            step, outcome = next_step, None

    async def _execute(self, step: StepDefinition, context: WorkflowContext) -> StepOutcome:
        logger.info("Running workflow step", workflow_id=context.workflow_id, step=step.name.value)
        timeout = step.timeout_for(self._settings.step_timeout_seconds)
        try:
            async with asyncio.timeout(timeout):
                return await self._handlers.run(step, context)
        except TimeoutError:
            return Fail(
                ExternalServiceError(
                    f"Step timed out after {timeout:g}s",
                    service=step.name.value,
                )
            )

    async def _suspend(self, context: WorkflowContext, step: StepDefinition, outcome: Suspend) -> None:
        try:
            await self._bridge.persist_token(
                job_id=outcome.job_id,
                resume_token=make_resume_token(step.name),
                user_id=context.user_id,
                workflow_id=context.workflow_id,
                input_ref=outcome.input_ref,
            )
        except InkstreamError as e:
            await self._fail(context, step, e)
            return

        self._registry.mark_waiting(context.workflow_id)
        logger.info(
            "Workflow suspended",
            workflow_id=context.workflow_id,
            step=step.name.value,
            job_id=outcome.job_id,
        )

    async def _fail(self, context: WorkflowContext, step: StepDefinition, error: InkstreamError) -> None:
        message = f"{step.error_label}: {error.message}"
        cause = getattr(error, "cause", None)
        logger.error(
            "Workflow step failed",
            workflow_id=context.workflow_id,
            user_id=context.user_id,
            step=step.name.value,
            error=message,
            cause=str(cause) if cause else None,
        )
        await self._append(context, WorkflowStatus.FAILED, StatusPatch(error=message))
        await self._registry.stop(
            context.workflow_id,
            ExecutionStatus.FAILED,
            error=step.error_label,
            cause=error.message,
        )

    async def _append(
        self,
        context: WorkflowContext,
        status: WorkflowStatus,
        patch: StatusPatch | None = None,
    ) -> WorkflowRecord:
        record = await self._store.append_status(
            context.user_id,
            context.workflow_id,
            status,
            patch,
            expect_active=True,
        )
        logger.debug("Workflow status recorded", workflow_id=context.workflow_id, status=status.value)
        return record
