"""Domain models for the job queue: names, states, options and typed payloads."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from deal_pulse.models import SourceType


class QueueName(str, Enum):
    """One queue per job family."""

    DAILY_BRIEF = "daily-brief"
    DOCUMENT_PROCESSING = "document-processing"
    EMAIL_PROCESSING = "email-processing"
    SOURCE_SYNC = "source-sync"


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


OPEN_JOB_STATUSES = (JobStatus.WAITING, JobStatus.ACTIVE)


class FailureClass(str, Enum):
    """Normalized failure classes recorded on failed attempts."""

    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    CREDENTIAL = "credential"
    DATA_INTEGRITY = "data_integrity"
    SOURCE_REJECTED = "source_rejected"
    UNKNOWN = "unknown"


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class DocumentOperation(str, Enum):
    SUMMARIZE = "summarize"
    EXTRACT_RISKS = "extract_risks"
    CLASSIFY = "classify"


class EmailOperation(str, Enum):
    ANALYZE_SENTIMENT = "analyze_sentiment"
    DETECT_BLOCKER = "detect_blocker"


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Delay schedule between attempts."""

    type: BackoffType = BackoffType.EXPONENTIAL
    base_seconds: float = 5.0

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait before the retry that follows 1-based ``attempt``."""

        if self.type is BackoffType.FIXED:
            return self.base_seconds
        return self.base_seconds * (2 ** max(attempt - 1, 0))


@dataclass(slots=True)
class JobOptions:
    """Per-enqueue options; producers fill these from queue policy."""

    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    timeout_seconds: float = 300.0
    dedup_key: str | None = None
    run_after: datetime | None = None


@dataclass(frozen=True, slots=True)
class DailyBriefPayload:
    deal_id: str
    brief_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "brief_date": self.brief_date.isoformat() if self.brief_date else None,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> DailyBriefPayload:
        brief_date = raw.get("brief_date")
        return cls(
            deal_id=str(raw["deal_id"]),
            brief_date=date.fromisoformat(brief_date) if brief_date else None,
        )


@dataclass(frozen=True, slots=True)
class SourceSyncPayload:
    deal_id: str
    source_type: SourceType
    sync_type: SyncType = SyncType.INCREMENTAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "source_type": self.source_type.value,
            "sync_type": self.sync_type.value,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SourceSyncPayload:
        return cls(
            deal_id=str(raw["deal_id"]),
            source_type=SourceType(raw["source_type"]),
            sync_type=SyncType(raw.get("sync_type", SyncType.INCREMENTAL.value)),
        )


@dataclass(frozen=True, slots=True)
class DocumentProcessingPayload:
    document_id: str
    deal_id: str
    operation: DocumentOperation

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "deal_id": self.deal_id,
            "operation": self.operation.value,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> DocumentProcessingPayload:
        return cls(
            document_id=str(raw["document_id"]),
            deal_id=str(raw["deal_id"]),
            operation=DocumentOperation(raw["operation"]),
        )


@dataclass(frozen=True, slots=True)
class EmailProcessingPayload:
    email_id: str
    deal_id: str
    operation: EmailOperation

    def to_dict(self) -> dict[str, Any]:
        return {
            "email_id": self.email_id,
            "deal_id": self.deal_id,
            "operation": self.operation.value,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> EmailProcessingPayload:
        return cls(
            email_id=str(raw["email_id"]),
            deal_id=str(raw["deal_id"]),
            operation=EmailOperation(raw["operation"]),
        )


JobPayload = DailyBriefPayload | SourceSyncPayload | DocumentProcessingPayload | EmailProcessingPayload

_PAYLOAD_TYPES: dict[QueueName, type[Any]] = {
    QueueName.DAILY_BRIEF: DailyBriefPayload,
    QueueName.SOURCE_SYNC: SourceSyncPayload,
    QueueName.DOCUMENT_PROCESSING: DocumentProcessingPayload,
    QueueName.EMAIL_PROCESSING: EmailProcessingPayload,
}


def payload_to_json(payload: JobPayload) -> str:
    return json.dumps(payload.to_dict(), ensure_ascii=False, sort_keys=True)


def payload_from_json(queue_name: QueueName, raw: str) -> JobPayload:
    """Decode a stored payload into the dataclass owned by ``queue_name``."""

    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"Job payload must be a JSON object, got {type(parsed).__name__}")
    return _PAYLOAD_TYPES[queue_name].from_dict(parsed)


@dataclass(slots=True)
class JobHandle:
    """Result of an enqueue call."""

    job_id: str
    queue_name: QueueName
    job_type: str
    status: JobStatus
    deduplicated: bool = False


@dataclass(slots=True)
class JobView:
    """Readable job view for CLI and worker logic."""

    job_id: str
    queue_name: QueueName
    job_type: str
    payload: JobPayload
    dedup_key: str | None
    status: JobStatus
    attempt: int
    max_attempts: int
    backoff: BackoffPolicy
    timeout_seconds: float
    progress: int
    run_after: datetime
    started_at: datetime | None
    heartbeat_at: datetime | None
    finished_at: datetime | None
    result: dict[str, Any] | None
    failure_class: FailureClass | None
    error_summary: str | None
    worker_id: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class JobEventView:
    """Job event entry for audit trail."""

    event_id: int
    job_id: str
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobDetails:
    job: JobView
    events: list[JobEventView]


@dataclass(slots=True)
class QueueCounts:
    """Per-queue counters; ``delayed`` are waiting jobs whose run_after is in the future."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "delayed": self.delayed,
        }
