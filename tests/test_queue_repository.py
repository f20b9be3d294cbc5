from __future__ import annotations

from collections.abc import Callable
from datetime import date, timedelta

import allure
import pytest

from deal_pulse.jobs.models import (
    BackoffPolicy,
    BackoffType,
    DailyBriefPayload,
    FailureClass,
    JobOptions,
    JobStatus,
    JobView,
    QueueName,
)
from deal_pulse.jobs.producers import JobProducer
from deal_pulse.jobs.repository import QueueRepository
from deal_pulse.storage.common import utc_now

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Persistence & Dedup"),
]

BRIEF_DATE = date(2026, 10, 18)


def _enqueue_brief(
    repository: QueueRepository,
    deal_id: str,
    **options: object,
) -> str:
    handle = repository.enqueue(
        queue_name=QueueName.DAILY_BRIEF,
        job_type="generate-brief",
        payload=DailyBriefPayload(deal_id=deal_id, brief_date=BRIEF_DATE),
        options=JobOptions(**options),  # type: ignore[arg-type]
    )
    return handle.job_id


def test_exponential_backoff_doubles_from_base() -> None:
    backoff = BackoffPolicy(BackoffType.EXPONENTIAL, 5.0)
    assert [backoff.delay_after(attempt) for attempt in (1, 2, 3)] == [5.0, 10.0, 20.0]
    assert BackoffPolicy(BackoffType.FIXED, 7.0).delay_after(3) == 7.0


def test_brief_enqueue_is_deduplicated_per_deal_and_date(
    producer: JobProducer,
    queue_repository: QueueRepository,
) -> None:
    first = producer.enqueue_daily_brief("deal-1", BRIEF_DATE)
    second = producer.enqueue_daily_brief("deal-1", BRIEF_DATE)
    other_deal = producer.enqueue_daily_brief("deal-2", BRIEF_DATE)

    assert second.job_id == first.job_id
    assert second.deduplicated
    assert not first.deduplicated
    assert other_deal.job_id != first.job_id
    assert queue_repository.counts(queue_name=QueueName.DAILY_BRIEF).waiting == 2

    job = queue_repository.get_job(first.job_id)
    assert job is not None
    assert job.dedup_key == "brief-deal-1-2026-10-18"
    assert job.payload == DailyBriefPayload(deal_id="deal-1", brief_date=BRIEF_DATE)


def test_dedup_key_is_released_once_job_finishes(
    producer: JobProducer,
    queue_repository: QueueRepository,
    claim: Callable[[QueueName], JobView],
) -> None:
    first = producer.enqueue_daily_brief("deal-1", BRIEF_DATE)
    job = claim(QueueName.DAILY_BRIEF)
    assert producer.enqueue_daily_brief("deal-1", BRIEF_DATE).job_id == first.job_id

    assert queue_repository.complete(job_id=job.job_id, attempt=job.attempt, result={"ok": True})

    again = producer.enqueue_daily_brief("deal-1", BRIEF_DATE)
    assert again.job_id != first.job_id
    assert not again.deduplicated


def test_claim_records_attempt_and_events(
    queue_repository: QueueRepository,
    claim: Callable[[QueueName], JobView],
) -> None:
    job_id = _enqueue_brief(queue_repository, "deal-1")

    job = claim(QueueName.DAILY_BRIEF)
    assert job.job_id == job_id
    assert job.status is JobStatus.ACTIVE
    assert job.attempt == 1
    assert queue_repository.claim_next(queue_name=QueueName.DAILY_BRIEF, worker_id="w2") is None

    assert queue_repository.update_progress(job_id=job_id, attempt=1, progress=140)
    assert queue_repository.complete(job_id=job_id, attempt=1, result={"brief_id": "b-1"})
    assert not queue_repository.update_progress(job_id=job_id, attempt=1, progress=10)

    details = queue_repository.get_job_details(job_id)
    assert details is not None
    assert details.job.status is JobStatus.COMPLETED
    assert details.job.progress == 100
    assert details.job.result == {"brief_id": "b-1"}
    assert [event.event_type for event in details.events] == ["enqueued", "claimed", "completed"]


def test_delayed_jobs_are_not_claimable_or_counted_as_waiting(
    queue_repository: QueueRepository,
) -> None:
    _enqueue_brief(queue_repository, "deal-1", run_after=utc_now() + timedelta(hours=1))
    _enqueue_brief(queue_repository, "deal-2")

    counts = queue_repository.counts(queue_name=QueueName.DAILY_BRIEF)
    assert (counts.waiting, counts.delayed) == (1, 1)

    job = queue_repository.claim_next(queue_name=QueueName.DAILY_BRIEF, worker_id="w1")
    assert job is not None
    assert job.payload.deal_id == "deal-2"  # type: ignore[union-attr]
    assert queue_repository.claim_next(queue_name=QueueName.DAILY_BRIEF, worker_id="w1") is None


def test_manual_retry_resets_attempt_budget(
    queue_repository: QueueRepository,
    claim: Callable[[QueueName], JobView],
) -> None:
    job_id = _enqueue_brief(queue_repository, "deal-1", max_attempts=1)
    job = claim(QueueName.DAILY_BRIEF)
    assert queue_repository.fail(
        job_id=job_id,
        attempt=job.attempt,
        failure_class=FailureClass.UNKNOWN,
        error_summary="RuntimeError: boom",
    )

    queue_repository.retry_failed(job_id=job_id)

    retried = queue_repository.get_job(job_id)
    assert retried is not None
    assert retried.status is JobStatus.WAITING
    assert retried.attempt == 0
    assert retried.error_summary is None
    with pytest.raises(RuntimeError, match="Only failed jobs"):
        queue_repository.retry_failed(job_id=job_id)
    with pytest.raises(RuntimeError, match="Job not found"):
        queue_repository.retry_failed(job_id="missing")


def test_clear_failed_only_removes_failed_jobs(
    queue_repository: QueueRepository,
    claim: Callable[[QueueName], JobView],
) -> None:
    failed_id = _enqueue_brief(queue_repository, "deal-1", max_attempts=1)
    job = claim(QueueName.DAILY_BRIEF)
    queue_repository.fail(
        job_id=failed_id,
        attempt=job.attempt,
        failure_class=FailureClass.TRANSIENT,
        error_summary="HTTP 503",
    )
    waiting_id = _enqueue_brief(queue_repository, "deal-2")

    assert queue_repository.clear_failed(queue_name=QueueName.DAILY_BRIEF) == 1
    assert queue_repository.get_job(failed_id) is None
    assert queue_repository.get_job(waiting_id) is not None


def test_completed_history_is_pruned_to_keep_limit(
    queue_repository: QueueRepository,
    claim: Callable[[QueueName], JobView],
) -> None:
    job_ids = []
    for index in range(3):
        job_ids.append(_enqueue_brief(queue_repository, f"deal-{index}"))
        job = claim(QueueName.DAILY_BRIEF)
        queue_repository.complete(
            job_id=job.job_id,
            attempt=job.attempt,
            result=None,
            keep_completed=2,
        )

    remaining = queue_repository.list_jobs(
        queue_name=QueueName.DAILY_BRIEF,
        status=JobStatus.COMPLETED,
    )
    assert len(remaining) == 2
    assert queue_repository.get_job(job_ids[0]) is None
    with pytest.raises(ValueError, match="terminal"):
        queue_repository.prune(queue_name=QueueName.DAILY_BRIEF, status=JobStatus.WAITING, keep=1)


def test_stale_active_jobs_are_requeued(
    queue_repository: QueueRepository,
    claim: Callable[[QueueName], JobView],
) -> None:
    job_id = _enqueue_brief(queue_repository, "deal-1")
    claim(QueueName.DAILY_BRIEF)

    recovered = queue_repository.recover_stale(
        queue_name=QueueName.DAILY_BRIEF,
        stale_after=timedelta(seconds=-1),
    )

    assert recovered == 1
    job = queue_repository.get_job(job_id)
    assert job is not None
    assert job.status is JobStatus.WAITING
    assert job.failure_class is FailureClass.TIMEOUT


def test_queue_stats_cover_every_queue(producer: JobProducer) -> None:
    producer.enqueue_daily_brief("deal-1", BRIEF_DATE)

    stats = producer.get_queue_stats()

    assert set(stats) == {queue.value for queue in QueueName}
    assert stats["daily-brief"].to_dict() == {
        "waiting": 1,
        "active": 0,
        "completed": 0,
        "failed": 0,
        "delayed": 0,
    }
