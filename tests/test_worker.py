from __future__ import annotations

import threading
from typing import Any

import allure
import pytest

from deal_pulse.errors import UnknownProcessorError
from deal_pulse.jobs.models import (
    BackoffPolicy,
    BackoffType,
    DailyBriefPayload,
    EmailOperation,
    EmailProcessingPayload,
    FailureClass,
    JobOptions,
    JobStatus,
    JobView,
    QueueName,
)
from deal_pulse.jobs.policies import DEFAULT_QUEUE_POLICIES, QueuePolicy
from deal_pulse.jobs.repository import QueueRepository
from deal_pulse.jobs.worker import ProgressReporter, QueueWorker, WorkerSupervisor

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Workers, Retries & Timeouts"),
]

NO_DELAY = BackoffPolicy(BackoffType.FIXED, 0.0)


class FlakyProcessor:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def process(self, job: JobView, report_progress: ProgressReporter) -> dict[str, Any]:
        self.calls += 1
        report_progress(50)
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure #{self.calls}")
        return {"success": True, "calls": self.calls}


class BlockingProcessor:
    def __init__(self) -> None:
        self.release = threading.Event()

    def process(self, job: JobView, report_progress: ProgressReporter) -> dict[str, Any]:
        self.release.wait(5)
        return {"success": True}


def _enqueue(repository: QueueRepository, **options: Any) -> str:
    return repository.enqueue(
        queue_name=QueueName.DAILY_BRIEF,
        job_type="generate-brief",
        payload=DailyBriefPayload(deal_id="deal-1"),
        options=JobOptions(backoff=NO_DELAY, **options),
    ).job_id


def _worker(repository: QueueRepository, processor: Any) -> QueueWorker:
    return QueueWorker(
        queue_name=QueueName.DAILY_BRIEF,
        repository=repository,
        processor=processor,
        policy=DEFAULT_QUEUE_POLICIES[QueueName.DAILY_BRIEF],
        worker_id="test",
        poll_interval_seconds=0,
    )


def test_job_succeeds_on_third_attempt(queue_repository: QueueRepository) -> None:
    job_id = _enqueue(queue_repository, max_attempts=3)
    processor = FlakyProcessor(failures=2)
    worker = _worker(queue_repository, processor)

    summary = worker.run_loop(max_idle_polls=1)

    assert processor.calls == 3
    assert (summary.processed, summary.retried, summary.succeeded, summary.failed) == (3, 2, 1, 0)
    job = queue_repository.get_job(job_id)
    assert job is not None
    assert job.status is JobStatus.COMPLETED
    assert job.attempt == 3
    assert job.result == {"success": True, "calls": 3}
    assert job.error_summary is None


def test_job_fails_after_max_attempts(queue_repository: QueueRepository) -> None:
    job_id = _enqueue(queue_repository, max_attempts=3)
    worker = _worker(queue_repository, FlakyProcessor(failures=10))

    summary = worker.run_loop(max_idle_polls=1)

    assert (summary.processed, summary.retried, summary.failed) == (3, 2, 1)
    details = queue_repository.get_job_details(job_id)
    assert details is not None
    assert details.job.status is JobStatus.FAILED
    assert details.job.failure_class is FailureClass.UNKNOWN
    assert details.job.error_summary == "RuntimeError: transient failure #3"
    assert [event.event_type for event in details.events].count("retry_scheduled") == 2
    counts = queue_repository.counts(queue_name=QueueName.DAILY_BRIEF)
    assert (counts.waiting, counts.active, counts.failed) == (0, 0, 1)


def test_retry_is_scheduled_with_backoff(queue_repository: QueueRepository) -> None:
    job_id = queue_repository.enqueue(
        queue_name=QueueName.DAILY_BRIEF,
        job_type="generate-brief",
        payload=DailyBriefPayload(deal_id="deal-1"),
        options=JobOptions(max_attempts=3, backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 5.0)),
    ).job_id
    worker = _worker(queue_repository, FlakyProcessor(failures=1))

    summary = worker.run_once()
    worker.close()

    assert summary.retried == 1
    job = queue_repository.get_job(job_id)
    assert job is not None
    assert job.status is JobStatus.WAITING
    assert job.started_at is None
    assert 4.0 < (job.run_after - job.updated_at).total_seconds() <= 5.5
    assert queue_repository.counts(queue_name=QueueName.DAILY_BRIEF).delayed == 1


def test_job_exceeding_timeout_fails_attempt(queue_repository: QueueRepository) -> None:
    job_id = _enqueue(queue_repository, max_attempts=1, timeout_seconds=0.2)
    processor = BlockingProcessor()
    worker = _worker(queue_repository, processor)

    try:
        summary = worker.run_once()
    finally:
        processor.release.set()
        worker.close()

    assert summary.timeouts == 1
    assert summary.failed == 1
    job = queue_repository.get_job(job_id)
    assert job is not None
    assert job.status is JobStatus.FAILED
    assert job.failure_class is FailureClass.TIMEOUT


def test_timed_out_attempt_delays_retry_past_abandoned_run(
    queue_repository: QueueRepository,
) -> None:
    job_id = _enqueue(queue_repository, max_attempts=2, timeout_seconds=1.0)
    processor = BlockingProcessor()
    worker = _worker(queue_repository, processor)

    try:
        summary = worker.run_once()
    finally:
        processor.release.set()
        worker.close()

    assert (summary.timeouts, summary.retried) == (1, 1)
    job = queue_repository.get_job(job_id)
    assert job is not None
    assert job.status is JobStatus.WAITING
    assert job.failure_class is FailureClass.TIMEOUT
    assert (job.run_after - job.updated_at).total_seconds() >= 0.9
    assert worker.run_once().processed == 0


def test_supervisor_runs_one_pool_per_queue(queue_repository: QueueRepository) -> None:
    for _ in range(3):
        queue_repository.enqueue(
            queue_name=QueueName.EMAIL_PROCESSING,
            job_type="email-analyze_sentiment",
            payload=EmailProcessingPayload(
                email_id="email-1",
                deal_id="deal-1",
                operation=EmailOperation.ANALYZE_SENTIMENT,
            ),
            options=JobOptions(),
        )
    processor = FlakyProcessor(failures=0)
    policies = {
        QueueName.EMAIL_PROCESSING: QueuePolicy(
            max_attempts=1,
            backoff=NO_DELAY,
            concurrency=2,
            timeout_seconds=5,
        ),
    }
    supervisor = WorkerSupervisor(
        repository=queue_repository,
        processors={QueueName.EMAIL_PROCESSING: processor},
        policies=policies,
        worker_id="test",
        poll_interval_seconds=0,
    )

    assert len(supervisor.pools[QueueName.EMAIL_PROCESSING].workers) == 2
    summaries = supervisor.run(max_idle_polls=1)

    assert summaries[QueueName.EMAIL_PROCESSING].succeeded == 3
    assert queue_repository.counts(queue_name=QueueName.EMAIL_PROCESSING).completed == 3


def test_supervisor_requires_processor_for_every_queue(queue_repository: QueueRepository) -> None:
    with pytest.raises(UnknownProcessorError, match="source-sync"):
        WorkerSupervisor(
            repository=queue_repository,
            processors={},
            policies=DEFAULT_QUEUE_POLICIES,
            worker_id="test",
            queues=(QueueName.SOURCE_SYNC,),
        )
