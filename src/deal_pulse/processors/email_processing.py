"""Email enrichment: sentiment, key points and blocker detection."""

from __future__ import annotations

import logging
from typing import Any

from deal_pulse.errors import EntityNotFoundError
from deal_pulse.intelligence.capabilities import DealIntelligence
from deal_pulse.jobs.models import EmailOperation, EmailProcessingPayload, JobView
from deal_pulse.jobs.worker import ProgressReporter
from deal_pulse.models import CommunicationView, Sentiment
from deal_pulse.processors.common import expect_payload
from deal_pulse.repository import DealRepository

logger = logging.getLogger(__name__)


class EmailProcessor:
    """Only sentiment, blocker flag and key points are ever written back."""

    def __init__(self, *, repository: DealRepository, intelligence: DealIntelligence) -> None:
        self.repository = repository
        self.intelligence = intelligence

    def process(self, job: JobView, report_progress: ProgressReporter) -> dict[str, Any]:
        payload = expect_payload(job, EmailProcessingPayload)
        email = self.repository.get_communication(payload.email_id)
        if email is None:
            raise EntityNotFoundError("email", payload.email_id)

        report_progress(30)
        if payload.operation is EmailOperation.ANALYZE_SENTIMENT:
            details = self._analyze_sentiment(email)
        elif email.thread_id:
            details = self._detect_thread_blocker(email)
        else:
            details = self._analyze_sentiment(email)
        report_progress(100)
        return {
            "success": True,
            "email_id": email.communication_id,
            "operation": payload.operation.value,
            **details,
        }

    def _analyze_sentiment(self, email: CommunicationView) -> dict[str, Any]:
        analysis = self.intelligence.analyze_sentiment(
            subject=email.subject,
            sender=email.sender,
            content=email.body or email.snippet,
        )
        sentiment = Sentiment(analysis.sentiment)
        self.repository.update_communication_analysis(
            email.communication_id,
            sentiment=sentiment,
            is_blocker=analysis.is_blocker,
            key_points=list(analysis.key_points),
        )
        logger.info(
            "Email %s sentiment %s%s",
            email.communication_id,
            sentiment.value,
            " (blocker)" if analysis.is_blocker else "",
        )
        return {
            "sentiment": sentiment.value,
            "is_blocker": analysis.is_blocker,
            "blocker_reason": analysis.blocker_reason,
            "key_points": list(analysis.key_points),
        }

    def _detect_thread_blocker(self, email: CommunicationView) -> dict[str, Any]:
        thread_id = email.thread_id or ""
        messages = self.repository.list_thread(deal_id=email.deal_id, thread_id=thread_id)
        verdict = self.intelligence.detect_thread_blocker(messages)
        if verdict.has_blocker:
            self.repository.update_communication_analysis(
                email.communication_id,
                sentiment=Sentiment.BLOCKER,
                is_blocker=True,
            )
            logger.info(
                "Thread %s blocked: %s",
                thread_id,
                verdict.blocker_title or "untitled blocker",
            )
        return {
            "thread_id": thread_id,
            "thread_size": len(messages),
            "has_blocker": verdict.has_blocker,
            "blocker_title": verdict.blocker_title,
            "age_in_days": verdict.age_in_days,
        }
