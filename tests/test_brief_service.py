from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

import allure
import pytest

from deal_pulse.briefs.service import BriefService
from deal_pulse.errors import EntityNotFoundError
from deal_pulse.jobs.models import DailyBriefPayload, JobOptions, JobView, QueueName
from deal_pulse.jobs.producers import JobProducer
from deal_pulse.jobs.repository import QueueRepository
from deal_pulse.models import BriefStatus, DocumentStatus, Sentiment
from deal_pulse.processors.daily_brief import DailyBriefProcessor
from deal_pulse.repository import DealRepository

pytestmark = [
    allure.epic("Daily Brief"),
    allure.feature("Generation & Publishing"),
]

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
TODAY = date(2026, 10, 18)


def _seed_deal(repository: DealRepository, *, reviewed: int, total: int = 10) -> str:
    deal = repository.create_deal(name="Project Atlas", deal_id="deal-1")
    legal = repository.create_workstream(deal_id=deal.deal_id, name="Legal")
    for index in range(total):
        repository.add_document(
            deal_id=deal.deal_id,
            name=f"Contract {index}",
            status=DocumentStatus.REVIEWED if index < reviewed else DocumentStatus.NEW,
            workstream_id=legal.workstream_id,
            created_at=NOW - timedelta(days=2),
        )
    repository.add_communication(
        deal_id=deal.deal_id,
        subject="Urgent: approval on escrow terms",
        sender="counsel@example.com",
        received_at=NOW - timedelta(hours=3),
        sentiment=Sentiment.BLOCKER,
        is_blocker=True,
    )
    return deal.deal_id


def test_generate_publishes_all_sections(deal_repository: DealRepository) -> None:
    deal_id = _seed_deal(deal_repository, reviewed=6)

    brief = BriefService(deal_repository).generate(deal_id, brief_date=TODAY, now=NOW)

    assert brief.status is BriefStatus.PUBLISHED
    assert brief.published_at == NOW
    assert brief.progress_snapshot == {
        "overall": 60,
        "workstreams": {"Legal": 60},
        "change_vs_previous": 0,
    }
    assert brief.changes["reviewed_count"] == 6
    assert brief.blockers["items"] == [
        {
            "title": "Urgent: approval on escrow terms",
            "workstream": "General",
            "age_days": 0,
            "owner": "counsel@example.com",
        },
    ]
    assert len(brief.risks["items"]) == 0
    assert brief.communications["notable"][0]["reason"] == "Blocker"


def test_regeneration_overwrites_the_same_brief(deal_repository: DealRepository) -> None:
    deal_id = _seed_deal(deal_repository, reviewed=6)
    service = BriefService(deal_repository)

    first = service.generate(deal_id, brief_date=TODAY, now=NOW)
    second = service.generate(deal_id, brief_date=TODAY, now=NOW)

    assert second.brief_id == first.brief_id
    assert second.progress_snapshot == first.progress_snapshot
    assert second.blockers == first.blockers
    assert len(deal_repository.list_briefs(deal_id)) == 1


def test_change_is_measured_against_previous_date(deal_repository: DealRepository) -> None:
    deal_id = _seed_deal(deal_repository, reviewed=4)
    service = BriefService(deal_repository)
    service.generate(deal_id, brief_date=TODAY - timedelta(days=1), now=NOW - timedelta(days=1))

    for document in deal_repository.list_documents(deal_id)[:7]:
        deal_repository.set_document_status(document.document_id, DocumentStatus.REVIEWED)
    brief = service.generate(deal_id, brief_date=TODAY, now=NOW)

    assert brief.progress_snapshot["change_vs_previous"] == brief.progress_snapshot["overall"] - 40


def test_missing_deal_writes_nothing(deal_repository: DealRepository) -> None:
    with pytest.raises(EntityNotFoundError, match="deal not found: ghost"):
        BriefService(deal_repository).generate("ghost", brief_date=TODAY, now=NOW)
    assert deal_repository.get_brief(deal_id="ghost", brief_date=TODAY) is None


def test_daily_brief_processor_reports_progress(
    deal_repository: DealRepository,
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    progress: list[int],
) -> None:
    deal_id = _seed_deal(deal_repository, reviewed=6)
    producer.enqueue_daily_brief(deal_id, TODAY)
    processor = DailyBriefProcessor(BriefService(deal_repository, clock=lambda: NOW))

    result = processor.process(claim(QueueName.DAILY_BRIEF), progress.append)

    stored = deal_repository.get_brief(deal_id=deal_id, brief_date=TODAY)
    assert stored is not None
    assert result == {
        "success": True,
        "brief_id": stored.brief_id,
        "deal_id": deal_id,
        "date": "2026-10-18",
    }
    assert progress == [10, 70, 100]


def test_undated_brief_job_uses_local_calendar_date(
    deal_repository: DealRepository,
    queue_repository: QueueRepository,
    claim: Callable[[QueueName], JobView],
    progress: list[int],
) -> None:
    deal_id = _seed_deal(deal_repository, reviewed=6)
    evening_in_new_york = datetime(2026, 10, 19, 2, 0, tzinfo=UTC)
    queue_repository.enqueue(
        queue_name=QueueName.DAILY_BRIEF,
        job_type="generate-brief",
        payload=DailyBriefPayload(deal_id=deal_id),
        options=JobOptions(),
    )
    service = BriefService(
        deal_repository,
        clock=lambda: evening_in_new_york,
        timezone="America/New_York",
    )

    result = DailyBriefProcessor(service).process(claim(QueueName.DAILY_BRIEF), progress.append)

    assert result["date"] == "2026-10-18"
    assert deal_repository.get_brief(deal_id=deal_id, brief_date=date(2026, 10, 18)) is not None
    assert service.generate(deal_id, now=evening_in_new_york).brief_date == date(2026, 10, 18)
