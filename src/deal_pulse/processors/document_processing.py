"""Document enrichment: summary, workstream classification and risk extraction."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from deal_pulse.errors import EntityNotFoundError
from deal_pulse.intelligence.capabilities import DealIntelligence
from deal_pulse.jobs.models import DocumentOperation, DocumentProcessingPayload, JobView
from deal_pulse.jobs.worker import ProgressReporter
from deal_pulse.models import DocumentView, SourceType
from deal_pulse.processors.common import expect_payload
from deal_pulse.processors.source_sync import AccessTokenProvider
from deal_pulse.repository import DealRepository
from deal_pulse.sources.base import DocumentContentSource, SourceAdapter

logger = logging.getLogger(__name__)


class DocumentContentLoader:
    """Fetches document text through the adapter of the document's source.

    Documents without a content-capable adapter or an active connection load as
    empty text; fetch errors propagate so the attempt is retried.
    """

    def __init__(
        self,
        *,
        repository: DealRepository,
        token_provider: AccessTokenProvider,
        adapters: Mapping[SourceType, SourceAdapter],
    ) -> None:
        self.repository = repository
        self.token_provider = token_provider
        self.adapters = dict(adapters)

    def load(self, document: DocumentView) -> str:
        adapter = self.adapters.get(document.source_type)
        if document.source_id is None or not isinstance(adapter, DocumentContentSource):
            return ""
        connection = self.repository.get_source_connection(
            deal_id=document.deal_id,
            source_type=document.source_type,
        )
        if connection is None or not connection.is_active:
            logger.info(
                "No active %s connection for document %s; using name only",
                document.source_type.value,
                document.document_id,
            )
            return ""
        token = self.token_provider.get_valid_access_token(connection)
        return adapter.fetch_document_text(connection.config, token, document.source_id)


class DocumentProcessor:
    def __init__(
        self,
        *,
        repository: DealRepository,
        intelligence: DealIntelligence,
        content_loader: DocumentContentLoader | None = None,
    ) -> None:
        self.repository = repository
        self.intelligence = intelligence
        self.content_loader = content_loader

    def process(self, job: JobView, report_progress: ProgressReporter) -> dict[str, Any]:
        payload = expect_payload(job, DocumentProcessingPayload)
        document = self.repository.get_document(payload.document_id)
        if document is None:
            raise EntityNotFoundError("document", payload.document_id)

        result: dict[str, Any] = {
            "success": True,
            "document_id": document.document_id,
            "operation": payload.operation.value,
        }
        if payload.operation is DocumentOperation.CLASSIFY and document.workstream_id:
            report_progress(100)
            return {**result, "already_classified": True, "workstream": document.workstream_name}

        content = self._content(document)
        report_progress(30)
        if payload.operation is DocumentOperation.SUMMARIZE:
            result.update(self._summarize(document, content))
        elif payload.operation is DocumentOperation.CLASSIFY:
            result.update(self._classify(document, content))
        else:
            result.update(self._extract_risks(document, content))
        report_progress(100)
        return result

    def _content(self, document: DocumentView) -> str:
        if self.content_loader is None:
            return ""
        return self.content_loader.load(document)

    def _summarize(self, document: DocumentView, content: str) -> dict[str, Any]:
        summary = self.intelligence.summarize(name=document.name, content=content or document.name)
        self.repository.update_document_summary(document.document_id, summary)
        logger.info("Summarized document %s (%d chars)", document.document_id, len(summary))
        return {"summary_length": len(summary)}

    def _classify(self, document: DocumentView, content: str) -> dict[str, Any]:
        classification = self.intelligence.classify(name=document.name, content=content)
        workstream = self.repository.ensure_workstream(
            deal_id=document.deal_id,
            name=classification.workstream,
        )
        self.repository.assign_document_workstream(document.document_id, workstream.workstream_id)
        logger.info(
            "Classified document %s as %s (confidence %d)",
            document.document_id,
            workstream.name,
            classification.confidence,
        )
        return {
            "already_classified": False,
            "workstream": workstream.name,
            "confidence": classification.confidence,
            "reasoning": classification.reasoning,
        }

    def _extract_risks(self, document: DocumentView, content: str) -> dict[str, Any]:
        risks = self.intelligence.detect_risks(name=document.name, content=content)
        return {"risks": [risk.model_dump() for risk in risks]}
