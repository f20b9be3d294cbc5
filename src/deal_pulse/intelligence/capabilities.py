"""Document and email enrichment on top of a completion client."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TypeVar

import openai
from pydantic import BaseModel, ValidationError

from deal_pulse.config import AiSettings
from deal_pulse.intelligence import prompts
from deal_pulse.intelligence.client import CompletionClient
from deal_pulse.intelligence.schemas import (
    CLASSIFICATION_FALLBACK,
    EMAIL_ANALYSIS_FALLBACK,
    THREAD_BLOCKER_FALLBACK,
    Classification,
    DocumentRisk,
    DocumentRisks,
    EmailAnalysis,
    ThreadBlocker,
)
from deal_pulse.models import CommunicationView

logger = logging.getLogger(__name__)

JSON_TEMPERATURE = 0.3
CLASSIFY_TEMPERATURE = 0.2
CLASSIFY_MAX_TOKENS = 200
CLASSIFY_PREVIEW_CHARS = 2000
RISKS_MAX_TOKENS = 2000
SENTIMENT_MAX_TOKENS = 500
THREAD_BLOCKER_MAX_TOKENS = 300
MAX_RISKS = 5

ModelT = TypeVar("ModelT", bound=BaseModel)


class DealIntelligence:
    """Summaries, risk extraction, classification and email analysis.

    Structured capabilities never raise on a bad model response: they log and
    return a neutral fallback so a flaky completion does not fail the job.
    ``summarize`` is the exception, it propagates backend errors so the job
    is retried.
    """

    def __init__(self, client: CompletionClient, settings: AiSettings | None = None) -> None:
        self.client = client
        self.settings = settings or AiSettings()

    def summarize(self, *, name: str, content: str) -> str:
        text = self.client.complete(
            system=prompts.SUMMARIZE_SYSTEM_PROMPT,
            prompt=prompts.SUMMARIZE_PROMPT.format(
                name=name,
                content=content[: self.settings.document_max_chars],
            ),
            max_tokens=self.settings.summary_max_tokens,
            temperature=self.settings.summary_temperature,
        )
        return text.strip()

    def detect_risks(self, *, name: str, content: str) -> list[DocumentRisk]:
        parsed = self._structured(
            DocumentRisks,
            capability="detect_risks",
            system=prompts.RISKS_SYSTEM_PROMPT,
            prompt=prompts.RISKS_PROMPT.format(
                name=name,
                content=content[: self.settings.document_max_chars],
            ),
            max_tokens=RISKS_MAX_TOKENS,
            temperature=JSON_TEMPERATURE,
        )
        if parsed is None:
            return []
        return list(parsed.risks[:MAX_RISKS])

    def classify(self, *, name: str, content: str) -> Classification:
        parsed = self._structured(
            Classification,
            capability="classify",
            system=prompts.CLASSIFY_SYSTEM_PROMPT,
            prompt=prompts.CLASSIFY_PROMPT.format(
                name=name,
                content=content[:CLASSIFY_PREVIEW_CHARS],
            ),
            max_tokens=CLASSIFY_MAX_TOKENS,
            temperature=CLASSIFY_TEMPERATURE,
        )
        return parsed or CLASSIFICATION_FALLBACK

    def analyze_sentiment(self, *, subject: str, sender: str, content: str) -> EmailAnalysis:
        parsed = self._structured(
            EmailAnalysis,
            capability="analyze_sentiment",
            system=prompts.SENTIMENT_SYSTEM_PROMPT,
            prompt=prompts.SENTIMENT_PROMPT.format(
                subject=subject,
                sender=sender,
                content=content[: self.settings.email_max_chars],
            ),
            max_tokens=SENTIMENT_MAX_TOKENS,
            temperature=JSON_TEMPERATURE,
        )
        return parsed or EMAIL_ANALYSIS_FALLBACK

    def detect_thread_blocker(self, messages: Sequence[CommunicationView]) -> ThreadBlocker:
        if not messages:
            return THREAD_BLOCKER_FALLBACK
        thread = "\n\n---\n\n".join(
            prompts.THREAD_MESSAGE_TEMPLATE.format(
                index=index,
                date=message.received_at.isoformat(),
                sender=message.sender,
                subject=message.subject,
                snippet=message.snippet or message.body[:500],
            )
            for index, message in enumerate(messages, start=1)
        )
        parsed = self._structured(
            ThreadBlocker,
            capability="detect_thread_blocker",
            system=prompts.THREAD_BLOCKER_SYSTEM_PROMPT,
            prompt=prompts.THREAD_BLOCKER_PROMPT.format(thread=thread),
            max_tokens=THREAD_BLOCKER_MAX_TOKENS,
            temperature=JSON_TEMPERATURE,
        )
        return parsed or THREAD_BLOCKER_FALLBACK

    def _structured(  # noqa: PLR0913
        self,
        model: type[ModelT],
        *,
        capability: str,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> ModelT | None:
        try:
            text = self.client.complete(
                system=system,
                prompt=prompt,
                max_tokens=max_tokens,
                temperature=temperature,
                json_response=True,
            )
        except openai.OpenAIError as error:
            logger.warning("%s completion failed: %s", capability, error)
            return None
        try:
            return model.model_validate_json(text)
        except ValidationError as error:
            logger.warning(
                "%s returned invalid payload (%d errors)",
                capability,
                error.error_count(),
            )
            return None
