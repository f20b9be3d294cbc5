"""Typed enqueue functions, one per job family."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import date, datetime

from deal_pulse.jobs.models import (
    DailyBriefPayload,
    DocumentOperation,
    DocumentProcessingPayload,
    EmailOperation,
    EmailProcessingPayload,
    JobHandle,
    QueueCounts,
    QueueName,
    SourceSyncPayload,
    SyncType,
)
from deal_pulse.jobs.policies import DEFAULT_QUEUE_POLICIES, QueuePolicy
from deal_pulse.jobs.repository import QueueRepository
from deal_pulse.models import SourceType
from deal_pulse.storage.common import DEFAULT_TIMEZONE, local_date, utc_now

logger = logging.getLogger(__name__)

GENERATE_BRIEF_JOB = "generate-brief"


def brief_dedup_key(deal_id: str, brief_date: date) -> str:
    return f"brief-{deal_id}-{brief_date.isoformat()}"


def sync_dedup_key(deal_id: str, source_type: SourceType, at: datetime) -> str:
    return f"sync-{deal_id}-{source_type.value}-{int(at.timestamp() * 1000)}"


class JobProducer:
    """Owns job names, dedup keys and default retry policy for every family."""

    def __init__(
        self,
        repository: QueueRepository,
        *,
        policies: Mapping[QueueName, QueuePolicy] | None = None,
        clock: Callable[[], datetime] = utc_now,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.repository = repository
        self.policies = dict(policies or DEFAULT_QUEUE_POLICIES)
        self.clock = clock
        self.timezone = timezone

    def enqueue_daily_brief(self, deal_id: str, brief_date: date | None = None) -> JobHandle:
        """Queue brief generation; one open job per deal per calendar date.

        Without ``brief_date`` the date is today in the producer timezone, matching
        the scheduler fan-out so both share one dedup key.
        """

        target_date = brief_date or local_date(self.clock(), self.timezone)
        policy = self.policies[QueueName.DAILY_BRIEF]
        handle = self.repository.enqueue(
            queue_name=QueueName.DAILY_BRIEF,
            job_type=GENERATE_BRIEF_JOB,
            payload=DailyBriefPayload(deal_id=deal_id, brief_date=target_date),
            options=policy.job_options(dedup_key=brief_dedup_key(deal_id, target_date)),
        )
        logger.info(
            "Daily brief job %s for deal %s on %s%s",
            handle.job_id,
            deal_id,
            target_date.isoformat(),
            " (deduplicated)" if handle.deduplicated else "",
        )
        return handle

    def enqueue_source_sync(
        self,
        deal_id: str,
        source_type: SourceType,
        sync_type: SyncType = SyncType.INCREMENTAL,
    ) -> JobHandle:
        policy = self.policies[QueueName.SOURCE_SYNC]
        return self.repository.enqueue(
            queue_name=QueueName.SOURCE_SYNC,
            job_type=f"sync-{source_type.value}",
            payload=SourceSyncPayload(deal_id=deal_id, source_type=source_type, sync_type=sync_type),
            options=policy.job_options(
                dedup_key=sync_dedup_key(deal_id, source_type, self.clock()),
            ),
        )

    def enqueue_document_processing(
        self,
        document_id: str,
        deal_id: str,
        operation: DocumentOperation,
    ) -> JobHandle:
        policy = self.policies[QueueName.DOCUMENT_PROCESSING]
        return self.repository.enqueue(
            queue_name=QueueName.DOCUMENT_PROCESSING,
            job_type=f"doc-{operation.value}",
            payload=DocumentProcessingPayload(
                document_id=document_id,
                deal_id=deal_id,
                operation=operation,
            ),
            options=policy.job_options(),
        )

    def enqueue_email_processing(
        self,
        email_id: str,
        deal_id: str,
        operation: EmailOperation,
    ) -> JobHandle:
        policy = self.policies[QueueName.EMAIL_PROCESSING]
        return self.repository.enqueue(
            queue_name=QueueName.EMAIL_PROCESSING,
            job_type=f"email-{operation.value}",
            payload=EmailProcessingPayload(email_id=email_id, deal_id=deal_id, operation=operation),
            options=policy.job_options(),
        )

    def get_queue_stats(self) -> dict[str, QueueCounts]:
        """Counters for every queue, keyed by queue name."""

        return {
            queue_name.value: self.repository.counts(queue_name=queue_name)
            for queue_name in QueueName
        }
