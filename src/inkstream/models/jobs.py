"""Models correlating external jobs with suspended workflows."""

from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from inkstream.models.workflow import utcnow


class JobToken(BaseModel):
    """Persisted link between an external job and a suspended workflow."""

    job_id: str = Field(..., min_length=1, description="Identifier issued by the external system")
    resume_token: str = Field(..., min_length=1, description="Opaque handle used to resume")
    user_id: str = Field(..., min_length=1)
    workflow_id: str = Field(..., min_length=1)
    input_ref: str = Field(..., description="Document submitted to the job")
    expires_at: datetime

    @classmethod
    def issue(
        cls,
        job_id: str,
        resume_token: str,
        user_id: str,
        workflow_id: str,
        input_ref: str,
        ttl_seconds: float,
        now: datetime | None = None,
    ) -> "JobToken":
        """Create a token that expires ``ttl_seconds`` from now."""
        now = now or utcnow()
        return cls(
            job_id=job_id,
            resume_token=resume_token,
            user_id=user_id,
            workflow_id=workflow_id,
            input_ref=input_ref,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the token has outlived its TTL."""
        return (now or utcnow()) >= self.expires_at


class JobOutcome(BaseModel):
    """Result reported by an external job."""

    success: bool
    artifact_ref: str | None = None
    error: str | None = None
    cause: str | None = None

    @classmethod
    def succeeded(cls, artifact_ref: str) -> "JobOutcome":
        """Outcome for a job that produced ``artifact_ref``."""
        return cls(success=True, artifact_ref=artifact_ref)

    @classmethod
    def failed(cls, error: str, cause: str | None = None) -> "JobOutcome":
        """Outcome for a job the external system reported as failed."""
        return cls(success=False, error=error, cause=cause)

    def describe_failure(self) -> str:
        """Single-line error text for the status history."""
        error = self.error or "External job failed"
        return f"{error}: {self.cause}" if self.cause else error
