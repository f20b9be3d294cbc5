"""Domain models for deals, their content and source connections."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class DealStatus(str, Enum):
    """Deal lifecycle; only active deals receive scheduled briefs."""

    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"


class DocumentStatus(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    REVIEWED = "reviewed"


class SourceType(str, Enum):
    """Where a document or communication came from."""

    MANUAL = "manual"
    GDRIVE = "gdrive"
    SHAREPOINT = "sharepoint"
    GMAIL = "gmail"
    OUTLOOK = "outlook"

    @property
    def is_mail(self) -> bool:
        return self in {SourceType.GMAIL, SourceType.OUTLOOK}


SYNCABLE_SOURCE_TYPES = (
    SourceType.GDRIVE,
    SourceType.SHAREPOINT,
    SourceType.GMAIL,
    SourceType.OUTLOOK,
)


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    RISK = "risk"
    BLOCKER = "blocker"


class BriefStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class UpsertAction(str, Enum):
    """Outcome of an idempotent upsert by source-native id."""

    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass(slots=True)
class DealView:
    deal_id: str
    name: str
    status: DealStatus
    created_at: datetime


@dataclass(slots=True)
class WorkstreamView:
    workstream_id: str
    deal_id: str
    name: str
    status: str


@dataclass(slots=True)
class DocumentView:
    """Document row joined with its workstream name."""

    document_id: str
    deal_id: str
    workstream_id: str | None
    workstream_name: str | None
    name: str
    status: DocumentStatus
    source_type: SourceType
    source_id: str | None
    source_url: str | None
    summary: str | None
    created_at: datetime
    updated_at: datetime
    last_ingested_at: datetime | None


@dataclass(slots=True)
class CommunicationView:
    communication_id: str
    deal_id: str
    subject: str
    sender: str
    snippet: str
    body: str
    thread_id: str | None
    source_type: SourceType
    source_id: str | None
    sentiment: Sentiment | None
    is_blocker: bool
    key_points: list[str]
    status: str
    received_at: datetime


@dataclass(slots=True)
class SourceConnectionView:
    """Connection with credential material and adapter configuration."""

    connection_id: str
    deal_id: str
    source_type: SourceType
    is_active: bool
    access_token: str | None
    refresh_token: str | None
    token_expires_at: datetime | None
    config: dict[str, Any]
    consecutive_auth_failures: int
    last_synced_at: datetime | None


@dataclass(slots=True)
class BriefView:
    brief_id: str
    deal_id: str
    brief_date: date
    status: BriefStatus
    progress_snapshot: dict[str, Any]
    changes: dict[str, Any]
    blockers: dict[str, Any]
    risks: dict[str, Any]
    communications: dict[str, Any]
    published_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class DocumentWrite:
    """Normalized document fields coming from a source sync."""

    source_id: str
    name: str
    source_type: SourceType
    modified_at: datetime
    source_url: str | None = None


@dataclass(slots=True)
class CommunicationWrite:
    """Normalized message fields coming from a source sync."""

    source_id: str
    subject: str
    sender: str
    received_at: datetime
    source_type: SourceType
    snippet: str = ""
    body: str = ""
    thread_id: str | None = None


@dataclass(slots=True)
class UpsertResult:
    entity_id: str
    action: UpsertAction


@dataclass(slots=True)
class SourceConnectionWrite:
    """Input for registering or replacing a source connection."""

    source_type: SourceType
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None
    config: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
