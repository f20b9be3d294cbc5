"""Load deal state, aggregate and persist a published brief."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime

from deal_pulse.briefs.aggregator import aggregate_brief
from deal_pulse.briefs.models import DailyBrief
from deal_pulse.errors import EntityNotFoundError
from deal_pulse.models import BriefStatus, BriefView
from deal_pulse.repository import DealRepository
from deal_pulse.storage.common import DEFAULT_TIMEZONE, local_date, utc_now

logger = logging.getLogger(__name__)


class BriefService:
    """Brief generation split into a read-only aggregate step and a publish step.

    Any load failure propagates before anything is written, so a stored brief is
    either fully replaced or left untouched.
    """

    def __init__(
        self,
        repository: DealRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.timezone = timezone

    def generate(
        self,
        deal_id: str,
        *,
        brief_date: date | None = None,
        now: datetime | None = None,
    ) -> BriefView:
        evaluated_at = now or self.clock()
        target_date = brief_date or self.default_brief_date(evaluated_at)
        brief = self.aggregate(deal_id, brief_date=target_date, now=evaluated_at)
        return self.publish(deal_id, brief, brief_date=target_date, now=evaluated_at)

    def default_brief_date(self, now: datetime) -> date:
        return local_date(now, self.timezone)

    def aggregate(self, deal_id: str, *, brief_date: date, now: datetime) -> DailyBrief:
        if self.repository.get_deal(deal_id) is None:
            raise EntityNotFoundError("deal", deal_id)
        return aggregate_brief(
            documents=self.repository.list_documents(deal_id),
            communications=self.repository.list_communications(deal_id),
            workstreams=self.repository.list_workstreams(deal_id),
            previous_brief=self.repository.get_previous_brief(deal_id=deal_id, before=brief_date),
            now=now,
        )

    def publish(
        self,
        deal_id: str,
        brief: DailyBrief,
        *,
        brief_date: date,
        now: datetime,
    ) -> BriefView:
        stored = self.repository.upsert_brief(
            deal_id=deal_id,
            brief_date=brief_date,
            sections=brief.to_sections(),
            status=BriefStatus.PUBLISHED,
            published_at=now,
        )
        logger.info(
            "Published brief %s for deal %s on %s (overall %d%%, %d blockers)",
            stored.brief_id,
            deal_id,
            brief_date.isoformat(),
            brief.progress_snapshot.overall,
            len(brief.blockers),
        )
        return stored
