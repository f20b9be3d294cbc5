from __future__ import annotations

from pathlib import Path

import allure

from deal_pulse.config import Settings
from deal_pulse.jobs.models import QueueName
from deal_pulse.jobs.producers import JobProducer
from deal_pulse.processors.daily_brief import DailyBriefProcessor
from deal_pulse.processors.document_processing import DocumentProcessor
from deal_pulse.processors.email_processing import EmailProcessor
from deal_pulse.processors.registry import build_processors
from deal_pulse.processors.source_sync import SourceSyncProcessor
from deal_pulse.repository import DealRepository
from tests.fakes import FakeCompletionClient

pytestmark = [
    allure.epic("Worker Pools"),
    allure.feature("Processor Registry"),
]


def test_brief_and_sync_queues_need_no_completion_client(
    db_path: Path,
    deal_repository: DealRepository,
    producer: JobProducer,
) -> None:
    processors = build_processors(
        Settings.from_env(db_path=db_path),
        deal_repository=deal_repository,
        producer=producer,
        queues=(QueueName.DAILY_BRIEF, QueueName.SOURCE_SYNC),
    )

    assert set(processors) == {QueueName.DAILY_BRIEF, QueueName.SOURCE_SYNC}
    assert isinstance(processors[QueueName.DAILY_BRIEF], DailyBriefProcessor)
    assert isinstance(processors[QueueName.SOURCE_SYNC], SourceSyncProcessor)


def test_all_queues_get_a_processor(
    db_path: Path,
    deal_repository: DealRepository,
    producer: JobProducer,
) -> None:
    processors = build_processors(
        Settings.from_env(db_path=db_path),
        deal_repository=deal_repository,
        producer=producer,
        completion_client=FakeCompletionClient(),
    )

    assert set(processors) == set(QueueName)
    assert isinstance(processors[QueueName.DOCUMENT_PROCESSING], DocumentProcessor)
    assert isinstance(processors[QueueName.EMAIL_PROCESSING], EmailProcessor)
