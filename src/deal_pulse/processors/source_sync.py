"""Source sync: pull changed items from one connection and fan out enrichment."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from deal_pulse.errors import (
    CredentialRefreshError,
    NoActiveConnectionError,
    NonRetryableSourceError,
)
from deal_pulse.jobs.models import (
    DocumentOperation,
    EmailOperation,
    JobView,
    SourceSyncPayload,
    SyncType,
)
from deal_pulse.jobs.producers import JobProducer
from deal_pulse.jobs.worker import ProgressReporter
from deal_pulse.models import SourceConnectionView, SourceType, UpsertAction
from deal_pulse.processors.common import expect_payload
from deal_pulse.repository import DealRepository
from deal_pulse.sources.base import SourceAdapter, SourceItem
from deal_pulse.storage.common import utc_now

logger = logging.getLogger(__name__)


class AccessTokenProvider(Protocol):
    def get_valid_access_token(self, connection: SourceConnectionView | None) -> str: ...


@dataclass(slots=True)
class SyncCounts:
    synced: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    enqueued: int = 0

    def to_result(self, **extra: Any) -> dict[str, Any]:
        return {
            "success": True,
            "synced": self.synced,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "enqueued": self.enqueued,
            **extra,
        }


class SourceSyncProcessor:
    """Read-only sync of one (deal, source type) connection.

    A missing or inactive connection is a successful no-op. A credential that
    cannot be refreshed counts one auth failure against the connection and
    fails the attempt.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: DealRepository,
        producer: JobProducer,
        token_provider: AccessTokenProvider,
        adapters: Mapping[SourceType, SourceAdapter],
        auth_failure_threshold: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.producer = producer
        self.token_provider = token_provider
        self.adapters = dict(adapters)
        self.auth_failure_threshold = auth_failure_threshold
        self.clock = clock

    def process(self, job: JobView, report_progress: ProgressReporter) -> dict[str, Any]:
        payload = expect_payload(job, SourceSyncPayload)
        source = payload.source_type.value
        connection = self.repository.get_source_connection(
            deal_id=payload.deal_id,
            source_type=payload.source_type,
        )
        if connection is None or not connection.is_active:
            logger.info(
                "No active %s connection for deal %s; nothing to sync",
                source,
                payload.deal_id,
            )
            return SyncCounts().to_result(source_type=source)

        adapter = self.adapters.get(payload.source_type)
        if adapter is None:
            raise NonRetryableSourceError(
                f"No adapter registered for source type {source}",
                code="unknown_source",
            )

        report_progress(10)
        started_at = self.clock()
        since = None if payload.sync_type is SyncType.FULL else connection.last_synced_at
        try:
            token = self.token_provider.get_valid_access_token(connection)
            items = adapter.list_changed_items(connection.config, token, since)
        except NoActiveConnectionError:
            logger.info("Connection %s went inactive; nothing to sync", connection.connection_id)
            return SyncCounts().to_result(source_type=source)
        except CredentialRefreshError:
            failures, deactivated = self.repository.record_auth_failure(
                connection.connection_id,
                threshold=self.auth_failure_threshold,
            )
            logger.warning(
                "Credential failure %d/%d on %s connection %s%s",
                failures,
                self.auth_failure_threshold,
                source,
                connection.connection_id,
                " (deactivated)" if deactivated else "",
            )
            raise

        counts = self._store_items(payload, items)
        self.repository.mark_connection_synced(connection.connection_id, synced_at=started_at)
        report_progress(100)
        logger.info(
            "Synced %s for deal %s: %d items (%d new, %d updated, %d enrichment jobs)",
            source,
            payload.deal_id,
            counts.synced,
            counts.created,
            counts.updated,
            counts.enqueued,
        )
        return counts.to_result(source_type=source, sync_type=payload.sync_type.value)

    def _store_items(self, payload: SourceSyncPayload, items: list[SourceItem]) -> SyncCounts:
        counts = SyncCounts(synced=len(items))
        now = self.clock()
        for item in items:
            if payload.source_type.is_mail:
                result = self.repository.upsert_synced_communication(
                    deal_id=payload.deal_id,
                    item=item.to_communication_write(payload.source_type),
                )
            else:
                result = self.repository.upsert_synced_document(
                    deal_id=payload.deal_id,
                    item=item.to_document_write(payload.source_type),
                    now=now,
                )

            if result.action is UpsertAction.SKIPPED:
                counts.skipped += 1
                continue
            if result.action is UpsertAction.INSERTED:
                counts.created += 1
            else:
                counts.updated += 1

            if payload.source_type.is_mail:
                self.producer.enqueue_email_processing(
                    result.entity_id,
                    payload.deal_id,
                    EmailOperation.ANALYZE_SENTIMENT,
                )
            else:
                self.producer.enqueue_document_processing(
                    result.entity_id,
                    payload.deal_id,
                    DocumentOperation.SUMMARIZE,
                )
            counts.enqueued += 1
        return counts
