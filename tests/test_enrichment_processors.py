from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import allure
import pytest

from deal_pulse.errors import EntityNotFoundError
from deal_pulse.intelligence.capabilities import DealIntelligence
from deal_pulse.jobs.models import DocumentOperation, EmailOperation, JobView, QueueName
from deal_pulse.jobs.producers import JobProducer
from deal_pulse.models import Sentiment, SourceConnectionWrite, SourceType
from deal_pulse.processors.document_processing import DocumentContentLoader, DocumentProcessor
from deal_pulse.processors.email_processing import EmailProcessor
from deal_pulse.repository import DealRepository
from tests.fakes import FakeAdapter, FakeCompletionClient, FakeTokenProvider

pytestmark = [
    allure.epic("AI Enrichment"),
    allure.feature("Document & Email Processors"),
]

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


@pytest.fixture()
def deal_id(deal_repository: DealRepository) -> str:
    return deal_repository.create_deal(name="Project Atlas", deal_id="deal-1").deal_id


def _document_job(
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    document_id: str,
    operation: DocumentOperation,
) -> JobView:
    producer.enqueue_document_processing(document_id, "deal-1", operation)
    return claim(QueueName.DOCUMENT_PROCESSING)


def _email_job(
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    email_id: str,
    operation: EmailOperation,
) -> JobView:
    producer.enqueue_email_processing(email_id, "deal-1", operation)
    return claim(QueueName.EMAIL_PROCESSING)


def test_summarize_reads_source_content_and_stores_summary(
    deal_repository: DealRepository,
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    deal_id: str,
    progress: list[int],
) -> None:
    document = deal_repository.add_document(
        deal_id=deal_id,
        name="Share Purchase Agreement",
        source_type=SourceType.GDRIVE,
        source_id="drive-1",
    )
    deal_repository.upsert_source_connection(
        deal_id=deal_id,
        connection=SourceConnectionWrite(source_type=SourceType.GDRIVE, access_token="token"),
    )
    client = FakeCompletionClient("  Buyer acquires 100% of shares.  ")
    processor = DocumentProcessor(
        repository=deal_repository,
        intelligence=DealIntelligence(client),
        content_loader=DocumentContentLoader(
            repository=deal_repository,
            token_provider=FakeTokenProvider(),
            adapters={
                SourceType.GDRIVE: FakeAdapter(
                    SourceType.GDRIVE,
                    texts={"drive-1": "The Buyer shall acquire all shares."},
                ),
            },
        ),
    )

    result = processor.process(
        _document_job(producer, claim, document.document_id, DocumentOperation.SUMMARIZE),
        progress.append,
    )

    assert result == {
        "success": True,
        "document_id": document.document_id,
        "operation": "summarize",
        "summary_length": len("Buyer acquires 100% of shares."),
    }
    assert progress == [30, 100]
    assert "The Buyer shall acquire all shares." in client.calls[0]["prompt"]
    stored = deal_repository.get_document(document.document_id)
    assert stored is not None
    assert stored.summary == "Buyer acquires 100% of shares."


def test_classify_assigns_workstream_once(
    deal_repository: DealRepository,
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    deal_id: str,
    progress: list[int],
) -> None:
    document = deal_repository.add_document(deal_id=deal_id, name="Mutual NDA")
    client = FakeCompletionClient(
        '{"workstream": "Legal", "confidence": 91, "reasoning": "NDA"}',
    )
    processor = DocumentProcessor(repository=deal_repository, intelligence=DealIntelligence(client))

    first = processor.process(
        _document_job(producer, claim, document.document_id, DocumentOperation.CLASSIFY),
        progress.append,
    )
    second = processor.process(
        _document_job(producer, claim, document.document_id, DocumentOperation.CLASSIFY),
        progress.append,
    )

    assert first["workstream"] == "Legal"
    assert first["confidence"] == 91
    assert first["already_classified"] is False
    assert second["already_classified"] is True
    assert len(client.calls) == 1
    [workstream] = deal_repository.list_workstreams(deal_id)
    stored = deal_repository.get_document(document.document_id)
    assert stored is not None
    assert stored.workstream_id == workstream.workstream_id
    assert stored.workstream_name == "Legal"


def test_classify_falls_back_to_ops_on_garbage(
    deal_repository: DealRepository,
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    deal_id: str,
    progress: list[int],
) -> None:
    document = deal_repository.add_document(deal_id=deal_id, name="Misc")
    processor = DocumentProcessor(
        repository=deal_repository,
        intelligence=DealIntelligence(FakeCompletionClient("I cannot decide.")),
    )

    result = processor.process(
        _document_job(producer, claim, document.document_id, DocumentOperation.CLASSIFY),
        progress.append,
    )

    assert (result["workstream"], result["confidence"]) == ("Ops", 0)


def test_extract_risks_returns_structured_risks(
    deal_repository: DealRepository,
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    deal_id: str,
    progress: list[int],
) -> None:
    document = deal_repository.add_document(deal_id=deal_id, name="Indemnity schedule")
    payload = {
        "risks": [
            {
                "title": "Uncapped indemnity",
                "severity": "high",
                "citation": "Clause 9.2",
                "explanation": "No liability cap for tax claims.",
            },
        ],
    }
    processor = DocumentProcessor(
        repository=deal_repository,
        intelligence=DealIntelligence(FakeCompletionClient(json.dumps(payload))),
    )

    result = processor.process(
        _document_job(producer, claim, document.document_id, DocumentOperation.EXTRACT_RISKS),
        progress.append,
    )

    assert result["risks"] == payload["risks"]


def test_missing_document_raises_not_found(
    deal_repository: DealRepository,
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    progress: list[int],
) -> None:
    processor = DocumentProcessor(
        repository=deal_repository,
        intelligence=DealIntelligence(FakeCompletionClient()),
    )

    with pytest.raises(EntityNotFoundError, match="document not found: ghost"):
        processor.process(
            _document_job(producer, claim, "ghost", DocumentOperation.SUMMARIZE),
            progress.append,
        )


def test_sentiment_analysis_updates_email(
    deal_repository: DealRepository,
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    deal_id: str,
    progress: list[int],
) -> None:
    email = deal_repository.add_communication(
        deal_id=deal_id,
        subject="Escrow release",
        sender="counsel@example.com",
        received_at=NOW,
        body="We cannot sign until the escrow terms are fixed.",
    )
    client = FakeCompletionClient(
        '{"sentiment": "blocker", "is_blocker": true, '
        '"blocker_reason": "Escrow terms", "key_points": ["Signing on hold"]}',
    )
    processor = EmailProcessor(repository=deal_repository, intelligence=DealIntelligence(client))

    result = processor.process(
        _email_job(producer, claim, email.communication_id, EmailOperation.ANALYZE_SENTIMENT),
        progress.append,
    )

    assert result["sentiment"] == "blocker"
    assert result["is_blocker"] is True
    assert result["email_id"] == email.communication_id
    stored = deal_repository.get_communication(email.communication_id)
    assert stored is not None
    assert stored.sentiment is Sentiment.BLOCKER
    assert stored.is_blocker is True
    assert stored.key_points == ["Signing on hold"]
    assert stored.subject == "Escrow release"


def test_thread_blocker_marks_only_the_triggering_email(
    deal_repository: DealRepository,
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    deal_id: str,
    progress: list[int],
) -> None:
    earlier = deal_repository.add_communication(
        deal_id=deal_id,
        subject="Waiting on signatures",
        sender="buyer@example.com",
        received_at=NOW - timedelta(days=4),
        snippet="Any update?",
        thread_id="thread-1",
    )
    latest = deal_repository.add_communication(
        deal_id=deal_id,
        subject="Re: Waiting on signatures",
        sender="buyer@example.com",
        received_at=NOW,
        snippet="Still waiting.",
        thread_id="thread-1",
    )
    client = FakeCompletionClient(
        '{"has_blocker": true, "blocker_title": "Signatures outstanding", '
        '"age_in_days": 4, "workstream": "Legal", "participants": ["buyer@example.com"]}',
    )
    processor = EmailProcessor(repository=deal_repository, intelligence=DealIntelligence(client))

    result = processor.process(
        _email_job(producer, claim, latest.communication_id, EmailOperation.DETECT_BLOCKER),
        progress.append,
    )

    assert result["has_blocker"] is True
    assert result["thread_size"] == 2
    assert client.calls[0]["prompt"].index("Any update?") < client.calls[0]["prompt"].index(
        "Still waiting.",
    )
    marked = deal_repository.get_communication(latest.communication_id)
    untouched = deal_repository.get_communication(earlier.communication_id)
    assert marked is not None
    assert untouched is not None
    assert (marked.sentiment, marked.is_blocker) == (Sentiment.BLOCKER, True)
    assert (untouched.sentiment, untouched.is_blocker) == (None, False)


def test_missing_email_raises_not_found(
    deal_repository: DealRepository,
    producer: JobProducer,
    claim: Callable[[QueueName], JobView],
    progress: list[int],
) -> None:
    processor = EmailProcessor(
        repository=deal_repository,
        intelligence=DealIntelligence(FakeCompletionClient()),
    )

    with pytest.raises(EntityNotFoundError, match="email not found: ghost"):
        processor.process(
            _email_job(producer, claim, "ghost", EmailOperation.ANALYZE_SENTIMENT),
            progress.append,
        )
