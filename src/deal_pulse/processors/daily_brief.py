"""Daily brief generation job."""

from __future__ import annotations

from typing import Any

from deal_pulse.briefs.service import BriefService
from deal_pulse.jobs.models import DailyBriefPayload, JobView
from deal_pulse.jobs.worker import ProgressReporter
from deal_pulse.processors.common import expect_payload


class DailyBriefProcessor:
    def __init__(self, service: BriefService) -> None:
        self.service = service

    def process(self, job: JobView, report_progress: ProgressReporter) -> dict[str, Any]:
        payload = expect_payload(job, DailyBriefPayload)
        report_progress(10)
        now = self.service.clock()
        brief_date = payload.brief_date or self.service.default_brief_date(now)
        brief = self.service.aggregate(payload.deal_id, brief_date=brief_date, now=now)
        report_progress(70)
        stored = self.service.publish(payload.deal_id, brief, brief_date=brief_date, now=now)
        report_progress(100)
        return {
            "success": True,
            "brief_id": stored.brief_id,
            "deal_id": payload.deal_id,
            "date": brief_date.isoformat(),
        }
