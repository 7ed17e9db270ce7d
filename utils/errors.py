"""
Pipeline exception hierarchy.

Lower layers raise these; only the sync controller and the worker pool decide
whether a failure is scoped to an item, a project, a job or the whole run.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class ApiError(PipelineError):
    """Remote API call failed."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ApiRequestError(ApiError):
    """Network-level failure (connection, DNS, timeout)."""


class ApiStatusError(ApiError):
    """Non-success, non-rate-limit HTTP status. Never retried."""


class RateLimitExceeded(ApiError):
    """Still rate limited after the retry cap was reached."""

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"Rate limited after {attempts} attempts", url=url, status=429)
        self.attempts = attempts


class ParseError(PipelineError):
    """Response body is malformed or lacks a required field."""


class PaginationError(PipelineError):
    """A search page could not be fetched; aborts that project's sync."""

    def __init__(self, project_id: str, start_at: int, cause: Exception) -> None:
        super().__init__(f"Pagination failed for project {project_id} at startAt={start_at}: {cause}")
        self.project_id = project_id
        self.start_at = start_at
        self.cause = cause


class ExtractionError(PipelineError):
    """Content extraction attempt failed."""


class CredentialError(ExtractionError):
    """No credential is available for the job's owning user."""


class ConfigurationError(PipelineError):
    """Deployment is incomplete, e.g. a platform category has no rate limiter."""


class StorageError(PipelineError):
    """A storage write failed; nothing from the batch was persisted."""
