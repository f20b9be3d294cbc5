"""Pydantic models validating structured AI responses."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

WorkstreamCategory = Literal["Legal", "HR", "Finance", "IT", "Ops"]
WORKSTREAM_CATEGORIES: tuple[str, ...] = ("Legal", "HR", "Finance", "IT", "Ops")


class _Response(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Classification(_Response):
    workstream: WorkstreamCategory
    confidence: int = Field(ge=0, le=100)
    reasoning: str = ""


class EmailAnalysis(_Response):
    sentiment: Literal["positive", "neutral", "risk", "blocker"]
    is_blocker: bool
    blocker_reason: str | None = None
    key_points: list[str] = Field(default_factory=list)


class ThreadBlocker(_Response):
    has_blocker: bool
    blocker_title: str | None = None
    age_in_days: int | None = Field(default=None, ge=0)
    workstream: WorkstreamCategory | None = None
    participants: list[str] = Field(default_factory=list)


class DocumentRisk(_Response):
    title: str
    severity: Literal["low", "medium", "high"]
    citation: str = ""
    explanation: str = ""


class DocumentRisks(_Response):
    risks: list[DocumentRisk] = Field(default_factory=list, max_length=5)


CLASSIFICATION_FALLBACK = Classification(
    workstream="Ops",
    confidence=0,
    reasoning="Classification failed",
)
EMAIL_ANALYSIS_FALLBACK = EmailAnalysis(sentiment="neutral", is_blocker=False, key_points=[])
THREAD_BLOCKER_FALLBACK = ThreadBlocker(has_blocker=False)
