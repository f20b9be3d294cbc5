"""Wire settings, repositories and collaborators into one processor per queue."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from deal_pulse.briefs.service import BriefService
from deal_pulse.config import Settings
from deal_pulse.intelligence.capabilities import DealIntelligence
from deal_pulse.intelligence.client import CompletionClient, OpenAICompletionClient
from deal_pulse.jobs.models import QueueName
from deal_pulse.jobs.producers import JobProducer
from deal_pulse.jobs.worker import JobProcessor
from deal_pulse.models import SourceType
from deal_pulse.oauth.refreshers import TokenRefresher, build_token_refreshers
from deal_pulse.oauth.token_manager import TokenManager
from deal_pulse.processors.daily_brief import DailyBriefProcessor
from deal_pulse.processors.document_processing import DocumentContentLoader, DocumentProcessor
from deal_pulse.processors.email_processing import EmailProcessor
from deal_pulse.processors.source_sync import SourceSyncProcessor
from deal_pulse.repository import DealRepository
from deal_pulse.sources.base import SourceAdapter
from deal_pulse.sources.registry import build_source_adapters

AI_QUEUES = frozenset({QueueName.DOCUMENT_PROCESSING, QueueName.EMAIL_PROCESSING})


def build_processors(  # noqa: PLR0913
    settings: Settings,
    *,
    deal_repository: DealRepository,
    producer: JobProducer,
    queues: Iterable[QueueName] | None = None,
    completion_client: CompletionClient | None = None,
    adapters: Mapping[SourceType, SourceAdapter] | None = None,
    refreshers: Mapping[SourceType, TokenRefresher] | None = None,
) -> dict[QueueName, JobProcessor]:
    """Build processors for ``queues`` (all queues by default).

    The completion client is only constructed when an enrichment queue is
    requested, so brief and sync workers run without AI credentials.
    """

    selected = tuple(queues or QueueName)
    source_adapters = dict(adapters or build_source_adapters(settings.sync))
    token_manager = TokenManager(
        deal_repository,
        refreshers or build_token_refreshers(settings.oauth),
        refresh_margin_seconds=settings.sync.token_refresh_margin_seconds,
    )

    intelligence: DealIntelligence | None = None
    if AI_QUEUES.intersection(selected):
        intelligence = DealIntelligence(
            completion_client or OpenAICompletionClient(settings.ai),
            settings.ai,
        )

    processors: dict[QueueName, JobProcessor] = {}
    for queue_name in selected:
        if queue_name is QueueName.DAILY_BRIEF:
            processors[queue_name] = DailyBriefProcessor(
                BriefService(deal_repository, timezone=settings.scheduler.timezone),
            )
        elif queue_name is QueueName.SOURCE_SYNC:
            processors[queue_name] = SourceSyncProcessor(
                repository=deal_repository,
                producer=producer,
                token_provider=token_manager,
                adapters=source_adapters,
                auth_failure_threshold=settings.sync.auth_failure_threshold,
            )
        elif queue_name is QueueName.DOCUMENT_PROCESSING and intelligence is not None:
            processors[queue_name] = DocumentProcessor(
                repository=deal_repository,
                intelligence=intelligence,
                content_loader=DocumentContentLoader(
                    repository=deal_repository,
                    token_provider=token_manager,
                    adapters=source_adapters,
                ),
            )
        elif queue_name is QueueName.EMAIL_PROCESSING and intelligence is not None:
            processors[queue_name] = EmailProcessor(
                repository=deal_repository,
                intelligence=intelligence,
            )
    return processors
