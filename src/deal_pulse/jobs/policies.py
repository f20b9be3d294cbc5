"""Per-family retry, concurrency, timeout and retention defaults."""

from __future__ import annotations

from dataclasses import dataclass, replace

from deal_pulse.jobs.models import BackoffPolicy, BackoffType, JobOptions, QueueName


@dataclass(frozen=True, slots=True)
class QueuePolicy:
    """How one queue retries, how many jobs run at once and how much history it keeps."""

    max_attempts: int
    backoff: BackoffPolicy
    concurrency: int
    timeout_seconds: float
    keep_completed: int | None = None
    keep_failed: int | None = None

    def job_options(self, *, dedup_key: str | None = None) -> JobOptions:
        return JobOptions(
            max_attempts=self.max_attempts,
            backoff=self.backoff,
            timeout_seconds=self.timeout_seconds,
            dedup_key=dedup_key,
        )

    def with_overrides(
        self,
        *,
        concurrency: int | None = None,
        max_attempts: int | None = None,
        timeout_seconds: float | None = None,
    ) -> QueuePolicy:
        return replace(
            self,
            concurrency=self.concurrency if concurrency is None else concurrency,
            max_attempts=self.max_attempts if max_attempts is None else max_attempts,
            timeout_seconds=self.timeout_seconds if timeout_seconds is None else timeout_seconds,
        )


DEFAULT_QUEUE_POLICIES: dict[QueueName, QueuePolicy] = {
    QueueName.DAILY_BRIEF: QueuePolicy(
        max_attempts=3,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 5.0),
        concurrency=2,
        timeout_seconds=300.0,
        keep_completed=100,
        keep_failed=500,
    ),
    QueueName.DOCUMENT_PROCESSING: QueuePolicy(
        max_attempts=3,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 5.0),
        concurrency=5,
        timeout_seconds=120.0,
    ),
    QueueName.EMAIL_PROCESSING: QueuePolicy(
        max_attempts=3,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 5.0),
        concurrency=10,
        timeout_seconds=60.0,
    ),
    QueueName.SOURCE_SYNC: QueuePolicy(
        max_attempts=5,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 10.0),
        concurrency=3,
        timeout_seconds=600.0,
    ),
}
