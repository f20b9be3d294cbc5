"""Exception hierarchy shared by processors, adapters and the worker pool."""

from __future__ import annotations

from dataclasses import dataclass


class DealPulseError(Exception):
    """Base class for application errors."""


class EntityNotFoundError(DealPulseError):
    """A job referenced a document, email or deal that does not exist."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class NoActiveConnectionError(DealPulseError):
    """Source connection is missing or has been deactivated."""


class CredentialRefreshError(DealPulseError):
    """Stored credentials expired and could not be refreshed."""


class JobTimeoutError(DealPulseError):
    """A job attempt exceeded its wall-clock budget."""

    def __init__(self, *, job_id: str, timeout_seconds: float) -> None:
        super().__init__(f"Job {job_id} timed out after {timeout_seconds:g}s")
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds


class UnknownProcessorError(DealPulseError):
    """No processor is registered for a queue."""


@dataclass(slots=True)
class SourceError(Exception):
    """Base source fetch error."""

    message: str
    code: str = "source_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class TemporarySourceError(SourceError):
    """Retryable source error (rate limit, 5xx, network)."""

    retry_after: int | None = None


@dataclass(slots=True)
class NonRetryableSourceError(SourceError):
    """Source rejected the request in a way a retry will not fix."""

    status_code: int | None = None
