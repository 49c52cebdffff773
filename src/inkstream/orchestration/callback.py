"""Callback bridge between external extraction jobs and suspended workflows."""

from collections.abc import Awaitable, Callable
from datetime import datetime

from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import (
    ExternalServiceError,
    ProcessingError,
    StorageError,
    WorkflowStateError,
)
from inkstream.core.logging import get_logger
from inkstream.core.retry import RetryConfig, retry_async
from inkstream.models.jobs import JobOutcome, JobToken
from inkstream.models.workflow import utcnow
from inkstream.services.base import ExtractionService
from inkstream.services.textract import TextractOutputCollector
from inkstream.storage.base import JobTokenStore

logger = get_logger(__name__)

ResumeHandler = Callable[[JobToken, JobOutcome], Awaitable[None]]


class CallbackBridge:
    """Lets a workflow suspend while an external job runs.

    A job token links the external job id to the suspended workflow. The
    token is deleted before the workflow is resumed, so a completion
    signal delivered more than once resumes the workflow at most once.
    """

    def __init__(
        self,
        extraction_service: ExtractionService,
        token_store: JobTokenStore,
        settings: Settings | None = None,
        collector: TextractOutputCollector | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        """Initialize the bridge.

        Args:
            extraction_service: Service that runs extraction jobs
            token_store: Store of job tokens
            settings: Application settings
            collector: Merges job output when artifact-arrival signals come in
            retry_config: Backoff for job submission
        """
        self._extraction = extraction_service
        self._tokens = token_store
        self._settings = settings or get_settings()
        self._collector = collector
        self._retry_config = retry_config or RetryConfig.from_settings(
            self._settings, retryable_exceptions=(ExternalServiceError,)
        )
        self._resume_handler: ResumeHandler | None = None

    def set_resume_handler(self, handler: ResumeHandler) -> None:
        """Register the callable that resumes a workflow."""
        self._resume_handler = handler

    async def submit(self, document_ref: str) -> str:
        """Start an extraction job, retrying transient failures.

        Raises:
            ExternalServiceError: If the job could not be started
            ProcessingError: If the service returned no job id
        """
        job_id = await retry_async(
            lambda: self._extraction.submit(document_ref),
            self._retry_config,
        )
        if not job_id:
            raise ProcessingError(
                "Extraction service returned no job id",
                details={"document_ref": document_ref, "service": self._extraction.name},
            )
        logger.info("Extraction job submitted", job_id=job_id, document_ref=document_ref)
        return job_id

    async def persist_token(
        self,
        job_id: str,
        resume_token: str,
        user_id: str,
        workflow_id: str,
        input_ref: str,
        ttl_seconds: float | None = None,
    ) -> JobToken:
        """Store the token a later completion signal resumes with."""
        token = JobToken.issue(
            job_id=job_id,
            resume_token=resume_token,
            user_id=user_id,
            workflow_id=workflow_id,
            input_ref=input_ref,
            ttl_seconds=ttl_seconds or self._settings.job_token_ttl_seconds,
        )
        await self._tokens.put(token)
        logger.debug(
            "Job token stored",
            job_id=job_id,
            workflow_id=workflow_id,
            expires_at=token.expires_at.isoformat(),
        )
        return token

    async def resume(self, job_id: str, outcome: JobOutcome) -> bool:
        """Resume the workflow waiting on ``job_id``.

        Returns:
            True if a workflow was resumed. Unknown or already consumed job
            ids, and workflows that can no longer move, give False.
        """
        if self._resume_handler is None:
            raise WorkflowStateError("No resume handler registered")

        token = await self._tokens.take(job_id)
        if token is None:
            logger.info("No job token found, ignoring signal", job_id=job_id)
            return False

        logger.info(
            "Resuming workflow",
            job_id=job_id,
            workflow_id=token.workflow_id,
            user_id=token.user_id,
            success=outcome.success,
        )
        try:
            await self._resume_handler(token, outcome)
        except WorkflowStateError as e:
            logger.warning(
                "Workflow could not be resumed",
                job_id=job_id,
                workflow_id=token.workflow_id,
                error=str(e),
            )
            return False
        return True

    async def handle_artifact(self, key: str) -> bool:
        """React to an extraction result part landing in the blob store.

        Returns:
            True if the arrival completed a job and resumed its workflow
        """
        if self._collector is None:
            raise WorkflowStateError("No output collector configured")

        parsed = self._collector.parse_part_key(key)
        if parsed is None:
            logger.debug("Ignoring object that is not an extraction part", key=key)
            return False
        job_id, part_number = parsed

        if await self._tokens.get(job_id) is None:
            logger.warning("No job token found for extraction output", job_id=job_id, key=key)
            return False

        try:
            merged_ref = await self._collector.collect(job_id, part_number)
        except (ProcessingError, StorageError) as e:
            logger.error("Failed to collect extraction output", job_id=job_id, error=str(e))
            return await self.resume(
                job_id,
                JobOutcome.failed("Failed to collect extraction output", cause=str(e)),
            )

        if merged_ref is None:
            return False
        return await self.resume(job_id, JobOutcome.succeeded(merged_ref))

    async def reap_expired(self, now: datetime | None = None) -> int:
        """Delete tokens that outlived their TTL."""
        count = await self._tokens.delete_expired(now or utcnow())
        if count:
            logger.info("Reaped expired job tokens", count=count)
        return count
