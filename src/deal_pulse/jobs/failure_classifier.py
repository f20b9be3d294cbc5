"""Deterministic job failure classification for events and queue inspection."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import openai

from deal_pulse.errors import (
    CredentialRefreshError,
    EntityNotFoundError,
    JobTimeoutError,
    NonRetryableSourceError,
    TemporarySourceError,
)
from deal_pulse.jobs.models import FailureClass

JOB_FAILURE_CLASSIFIER_VERSION = 1

_CREDENTIAL_PATTERNS: tuple[str, ...] = (
    "invalid_grant",
    "unauthorized",
    "forbidden",
    "invalid api key",
    "token has been expired or revoked",
    "authentication",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "temporarily unavailable",
    "connection reset",
    "database is locked",
    "try again later",
)


@dataclass(slots=True)
class JobFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None = None

    def to_event_details(self) -> dict[str, object]:
        return {
            "classifier_version": JOB_FAILURE_CLASSIFIER_VERSION,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_job_failure(error: BaseException) -> JobFailureClassification:  # noqa: PLR0911
    """Map an exception raised by a processor onto a ``FailureClass``.

    Every class is retried by the worker pool; the classification only tells the
    operator why the attempt failed.
    """

    if isinstance(error, JobTimeoutError):
        return JobFailureClassification(FailureClass.TIMEOUT, "job_timeout")
    if isinstance(error, CredentialRefreshError):
        return JobFailureClassification(FailureClass.CREDENTIAL, "credential_refresh")
    if isinstance(error, EntityNotFoundError):
        return JobFailureClassification(FailureClass.DATA_INTEGRITY, "entity_not_found")
    if isinstance(error, TemporarySourceError):
        return JobFailureClassification(FailureClass.TRANSIENT, "temporary_source_error")
    if isinstance(error, NonRetryableSourceError):
        return JobFailureClassification(FailureClass.SOURCE_REJECTED, "source_rejected")
    if isinstance(error, (httpx.TimeoutException, openai.APITimeoutError, TimeoutError)):
        return JobFailureClassification(FailureClass.TIMEOUT, "network_timeout")
    if isinstance(error, openai.AuthenticationError):
        return JobFailureClassification(FailureClass.CREDENTIAL, "ai_authentication")
    if isinstance(
        error,
        (httpx.TransportError, openai.APIConnectionError, openai.RateLimitError, ConnectionError),
    ):
        return JobFailureClassification(FailureClass.TRANSIENT, "network_transient")

    haystack = str(error).lower()
    pattern = _first_match(haystack, _CREDENTIAL_PATTERNS)
    if pattern is not None:
        return JobFailureClassification(FailureClass.CREDENTIAL, "credential_pattern", pattern)
    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None:
        return JobFailureClassification(FailureClass.TRANSIENT, "transient_pattern", pattern)
    return JobFailureClassification(FailureClass.UNKNOWN, "fallback_unknown")


def summarize_error(error: BaseException, *, limit: int = 500) -> str:
    text = f"{type(error).__name__}: {error}".strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
