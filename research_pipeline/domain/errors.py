"""Exception hierarchy for the research job pipeline."""
from __future__ import annotations


class ResearchJobError(Exception):
    """Base exception for all research job errors."""

    def __init__(self, message: str, detail: str | None = None) -> None:
        self.message = message
        self.detail = detail
        super().__init__(message)


class InvalidJobInputError(ResearchJobError, ValueError):
    """Raised when job creation parameters are rejected."""

    def __init__(self, message: str, field: str | None = None) -> None:
        if field:
            message = f"invalid value for '{field}': {message}"
        super().__init__(message)
        self.field = field


class JobNotFoundError(ResearchJobError, KeyError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"job not found: {job_id}")
        self.job_id = job_id

    def __str__(self) -> str:
        return self.message


class ActiveJobExistsError(ResearchJobError):
    """Raised when a workspace already owns a non-terminal job."""

    def __init__(self, workspace_id: str, job_id: str) -> None:
        super().__init__(f"workspace {workspace_id} already has an active research job ({job_id})")
        self.workspace_id = workspace_id
        self.job_id = job_id


class JobTransitionError(ResearchJobError):
    """Raised when a write would violate the job lifecycle."""


class RecoveryInProgressError(ResearchJobError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"recovery already in flight for job {job_id}")
        self.job_id = job_id


class DispatchError(ResearchJobError):
    """Raised when the workflow engine could not be signalled."""


class SignatureError(ResearchJobError):
    """Raised when a progress callback carries an invalid signature."""
