from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, date, datetime

import allure
import pytest

from deal_pulse.jobs.models import JobHandle, JobStatus, QueueName
from deal_pulse.jobs.producers import JobProducer
from deal_pulse.jobs.repository import QueueRepository
from deal_pulse.models import DealStatus
from deal_pulse.repository import DealRepository
from deal_pulse.scheduler import (
    DailyBriefScheduler,
    fan_out_daily_briefs,
    trigger_daily_briefs,
)

pytestmark = [
    allure.epic("Daily Brief"),
    allure.feature("Scheduler"),
]

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


class FailingProducer(JobProducer):
    def __init__(self, repository: QueueRepository, *, failing_deal_id: str) -> None:
        super().__init__(repository)
        self.failing_deal_id = failing_deal_id

    def enqueue_daily_brief(self, deal_id: str, brief_date: date | None = None) -> JobHandle:
        if deal_id == self.failing_deal_id:
            raise RuntimeError("queue unavailable")
        return super().enqueue_daily_brief(deal_id, brief_date)


def _clock(*moments: datetime) -> Callable[[], datetime]:
    remaining: Iterator[datetime] = iter(moments)
    last = moments[-1]

    def _now() -> datetime:
        return next(remaining, last)

    return _now


def _scheduler(
    deal_repository: DealRepository,
    producer: JobProducer,
    clock: Callable[[], datetime] = lambda: NOW,
) -> DailyBriefScheduler:
    return DailyBriefScheduler(
        deal_repository=deal_repository,
        producer=producer,
        cron="0 8 * * *",
        timezone="America/New_York",
        clock=clock,
    )


def test_next_fire_time_uses_scheduler_timezone(
    deal_repository: DealRepository,
    producer: JobProducer,
) -> None:
    scheduler = _scheduler(deal_repository, producer)

    assert scheduler.next_fire_time(datetime(2026, 10, 18, 11, 0, tzinfo=UTC)) == NOW
    assert scheduler.next_fire_time(datetime(2026, 10, 18, 13, 0, tzinfo=UTC)) == datetime(
        2026,
        10,
        19,
        12,
        0,
        tzinfo=UTC,
    )


def test_brief_date_follows_local_calendar(
    deal_repository: DealRepository,
    producer: JobProducer,
) -> None:
    scheduler = _scheduler(deal_repository, producer)

    assert scheduler.brief_date_for(datetime(2026, 10, 19, 3, 0, tzinfo=UTC)) == date(2026, 10, 18)


def test_invalid_cron_is_rejected(deal_repository: DealRepository, producer: JobProducer) -> None:
    with pytest.raises(ValueError, match="Invalid cron expression"):
        DailyBriefScheduler(deal_repository=deal_repository, producer=producer, cron="every day")


def test_fan_out_queues_only_active_deals(
    deal_repository: DealRepository,
    queue_repository: QueueRepository,
    producer: JobProducer,
) -> None:
    atlas = deal_repository.create_deal(name="Project Atlas")
    deal_repository.create_deal(name="Project Borealis", status=DealStatus.PAUSED)
    deal_repository.create_deal(name="Project Cobalt", status=DealStatus.CLOSED)

    result = fan_out_daily_briefs(
        deal_repository=deal_repository,
        producer=producer,
        brief_date=date(2026, 10, 18),
    )

    assert result.message == "Queued briefs for 1/1 deals"
    assert [entry.deal_id for entry in result.results] == [atlas.deal_id]
    jobs = queue_repository.list_jobs(queue_name=QueueName.DAILY_BRIEF, status=JobStatus.WAITING)
    assert [job.dedup_key for job in jobs] == [f"brief-{atlas.deal_id}-2026-10-18"]


def test_fan_out_continues_after_a_deal_fails(
    deal_repository: DealRepository,
    queue_repository: QueueRepository,
) -> None:
    atlas = deal_repository.create_deal(name="Project Atlas")
    borealis = deal_repository.create_deal(name="Project Borealis")
    producer = FailingProducer(queue_repository, failing_deal_id=atlas.deal_id)

    result = fan_out_daily_briefs(
        deal_repository=deal_repository,
        producer=producer,
        brief_date=date(2026, 10, 18),
    )

    assert result.message == "Queued briefs for 1/2 deals"
    outcomes = {entry.deal_id: entry for entry in result.results}
    assert outcomes[atlas.deal_id].success is False
    assert outcomes[atlas.deal_id].error == "queue unavailable"
    assert outcomes[borealis.deal_id].success is True
    assert outcomes[borealis.deal_id].job_id is not None
    assert result.to_dict()["queued"] == 1


def test_repeated_fan_out_is_deduplicated(
    deal_repository: DealRepository,
    producer: JobProducer,
) -> None:
    deal_repository.create_deal(name="Project Atlas")
    scheduler = _scheduler(deal_repository, producer)

    first = scheduler.trigger()
    second = scheduler.trigger()

    assert first.results[0].deduplicated is False
    assert second.results[0].deduplicated is True
    assert second.results[0].job_id == first.results[0].job_id


def test_run_fires_once_and_stops(
    deal_repository: DealRepository,
    queue_repository: QueueRepository,
    producer: JobProducer,
) -> None:
    deal = deal_repository.create_deal(name="Project Atlas")
    scheduler = _scheduler(
        deal_repository,
        producer,
        clock=_clock(datetime(2026, 10, 18, 11, 59, tzinfo=UTC), NOW),
    )

    results = scheduler.run(max_fires=1)

    assert len(results) == 1
    assert results[0].brief_date == date(2026, 10, 18)
    [job] = queue_repository.list_jobs(queue_name=QueueName.DAILY_BRIEF)
    assert job.dedup_key == f"brief-{deal.deal_id}-2026-10-18"


def test_stopped_scheduler_does_not_fire(
    deal_repository: DealRepository,
    producer: JobProducer,
) -> None:
    deal_repository.create_deal(name="Project Atlas")
    scheduler = _scheduler(deal_repository, producer)
    scheduler.request_stop()

    assert scheduler.run(max_fires=3) == []


def test_manual_trigger_shares_dedup_keys_with_scheduler(
    deal_repository: DealRepository,
    producer: JobProducer,
) -> None:
    deal_repository.create_deal(name="Project Atlas")
    late_evening = datetime(2026, 10, 19, 2, 30, tzinfo=UTC)

    manual = trigger_daily_briefs(
        deal_repository=deal_repository,
        producer=producer,
        timezone="America/New_York",
        at=late_evening,
    )
    scheduled = _scheduler(deal_repository, producer).trigger(late_evening)

    assert manual.brief_date == date(2026, 10, 18)
    assert scheduled.results[0].deduplicated is True
    assert scheduled.results[0].job_id == manual.results[0].job_id


def test_direct_enqueue_uses_scheduler_calendar_date(
    deal_repository: DealRepository,
    queue_repository: QueueRepository,
) -> None:
    deal = deal_repository.create_deal(name="Project Atlas")
    evening_in_new_york = datetime(2026, 10, 19, 2, 0, tzinfo=UTC)
    producer = JobProducer(
        queue_repository,
        clock=lambda: evening_in_new_york,
        timezone="America/New_York",
    )

    fan_out = trigger_daily_briefs(
        deal_repository=deal_repository,
        producer=producer,
        timezone="America/New_York",
        at=evening_in_new_york,
    )
    direct = producer.enqueue_daily_brief(deal.deal_id)

    assert direct.deduplicated is True
    assert direct.job_id == fan_out.results[0].job_id
    [job] = queue_repository.list_jobs(queue_name=QueueName.DAILY_BRIEF, status=JobStatus.WAITING)
    assert job.dedup_key == f"brief-{deal.deal_id}-2026-10-18"
