"""Runtime configuration for queues, workers, scheduler, sync and AI enrichment."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from deal_pulse.jobs.models import QueueName
from deal_pulse.jobs.policies import DEFAULT_QUEUE_POLICIES, QueuePolicy


@dataclass(slots=True)
class WorkerSettings:
    """Worker pool loop settings shared by every queue."""

    worker_id: str = field(default_factory=lambda: f"{socket.gethostname()}-{os.getpid()}")
    poll_interval_seconds: float = 1.0
    stale_after_seconds: int = 900
    graceful_shutdown_seconds: int = 30


@dataclass(slots=True)
class SchedulerSettings:
    """Cron cadence for the daily brief fan-out."""

    cron: str = "0 8 * * *"
    timezone: str = "America/New_York"


@dataclass(slots=True)
class SyncSettings:
    """Source sync and credential settings."""

    auth_failure_threshold: int = 3
    token_refresh_margin_seconds: int = 300
    request_timeout_seconds: float = 30.0
    page_size: int = 100


@dataclass(slots=True)
class AiSettings:
    """Chat-completion backend used for enrichment."""

    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = 0.7
    max_tokens: int = 4096
    request_timeout_seconds: float = 60.0
    summary_max_tokens: int = 500
    summary_temperature: float = 0.5
    document_max_chars: int = 8000
    email_max_chars: int = 2000


@dataclass(slots=True)
class OAuthSettings:
    """OAuth client registrations used to refresh source credentials."""

    google_client_id: str | None = None
    google_client_secret: str | None = None
    microsoft_client_id: str | None = None
    microsoft_client_secret: str | None = None
    microsoft_tenant: str = "common"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".deal_pulse.db")
    sqlite_busy_timeout_ms: int = 5000
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    queues: dict[QueueName, QueuePolicy] = field(
        default_factory=lambda: dict(DEFAULT_QUEUE_POLICIES),
    )
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    ai: AiSettings = field(default_factory=AiSettings)
    oauth: OAuthSettings = field(default_factory=OAuthSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        worker_defaults = WorkerSettings()
        return cls(
            db_path=db_path or Path(os.getenv("DEAL_PULSE_DB_PATH", ".deal_pulse.db")),
            sqlite_busy_timeout_ms=int(os.getenv("DEAL_PULSE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            worker=WorkerSettings(
                worker_id=os.getenv("DEAL_PULSE_WORKER_ID", worker_defaults.worker_id),
                poll_interval_seconds=float(
                    os.getenv("DEAL_PULSE_WORKER_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                stale_after_seconds=int(os.getenv("DEAL_PULSE_WORKER_STALE_AFTER_SECONDS", "900")),
                graceful_shutdown_seconds=int(
                    os.getenv("DEAL_PULSE_WORKER_GRACEFUL_SHUTDOWN_SECONDS", "30"),
                ),
            ),
            queues={
                queue_name: _queue_policy_from_env(queue_name, policy)
                for queue_name, policy in DEFAULT_QUEUE_POLICIES.items()
            },
            scheduler=SchedulerSettings(
                cron=os.getenv("DEAL_PULSE_DAILY_BRIEF_CRON", "0 8 * * *"),
                timezone=os.getenv("DEAL_PULSE_TIMEZONE", "America/New_York"),
            ),
            sync=SyncSettings(
                auth_failure_threshold=int(os.getenv("DEAL_PULSE_SYNC_AUTH_FAILURE_THRESHOLD", "3")),
                token_refresh_margin_seconds=int(
                    os.getenv("DEAL_PULSE_TOKEN_REFRESH_MARGIN_SECONDS", "300"),
                ),
                request_timeout_seconds=float(
                    os.getenv("DEAL_PULSE_SYNC_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                page_size=int(os.getenv("DEAL_PULSE_SYNC_PAGE_SIZE", "100")),
            ),
            ai=AiSettings(
                model=os.getenv("DEAL_PULSE_AI_MODEL", "gpt-4o-mini"),
                api_key=os.getenv("DEAL_PULSE_AI_API_KEY") or os.getenv("OPENAI_API_KEY"),
                base_url=os.getenv("DEAL_PULSE_AI_BASE_URL") or None,
                temperature=float(os.getenv("DEAL_PULSE_AI_TEMPERATURE", "0.7")),
                max_tokens=int(os.getenv("DEAL_PULSE_AI_MAX_TOKENS", "4096")),
                request_timeout_seconds=float(
                    os.getenv("DEAL_PULSE_AI_REQUEST_TIMEOUT_SECONDS", "60.0"),
                ),
            ),
            oauth=OAuthSettings(
                google_client_id=os.getenv("DEAL_PULSE_GOOGLE_CLIENT_ID"),
                google_client_secret=os.getenv("DEAL_PULSE_GOOGLE_CLIENT_SECRET"),
                microsoft_client_id=os.getenv("DEAL_PULSE_MICROSOFT_CLIENT_ID"),
                microsoft_client_secret=os.getenv("DEAL_PULSE_MICROSOFT_CLIENT_SECRET"),
                microsoft_tenant=os.getenv("DEAL_PULSE_MICROSOFT_TENANT", "common"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on values the runtime cannot honor."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("DEAL_PULSE_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("DEAL_PULSE_WORKER_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.stale_after_seconds <= 0:
            raise ValueError("DEAL_PULSE_WORKER_STALE_AFTER_SECONDS must be > 0.")
        for queue_name, policy in self.queues.items():
            prefix = _queue_env_prefix(queue_name)
            if policy.concurrency <= 0:
                raise ValueError(f"{prefix}_CONCURRENCY must be > 0.")
            if policy.max_attempts <= 0:
                raise ValueError(f"{prefix}_MAX_ATTEMPTS must be > 0.")
            if policy.timeout_seconds <= 0:
                raise ValueError(f"{prefix}_TIMEOUT_SECONDS must be > 0.")
        if not croniter.is_valid(self.scheduler.cron):
            raise ValueError(f"Invalid DEAL_PULSE_DAILY_BRIEF_CRON: {self.scheduler.cron!r}")
        try:
            ZoneInfo(self.scheduler.timezone)
        except (ZoneInfoNotFoundError, ValueError) as error:
            raise ValueError(
                f"Unknown DEAL_PULSE_TIMEZONE: {self.scheduler.timezone!r}",
            ) from error
        if self.sync.auth_failure_threshold <= 0:
            raise ValueError("DEAL_PULSE_SYNC_AUTH_FAILURE_THRESHOLD must be > 0.")
        if self.sync.token_refresh_margin_seconds < 0:
            raise ValueError("DEAL_PULSE_TOKEN_REFRESH_MARGIN_SECONDS must be >= 0.")


def _queue_policy_from_env(queue_name: QueueName, default: QueuePolicy) -> QueuePolicy:
    prefix = _queue_env_prefix(queue_name)
    return default.with_overrides(
        concurrency=_env_int(f"{prefix}_CONCURRENCY"),
        max_attempts=_env_int(f"{prefix}_MAX_ATTEMPTS"),
        timeout_seconds=_env_float(f"{prefix}_TIMEOUT_SECONDS"),
    )


def _queue_env_prefix(queue_name: QueueName) -> str:
    return "DEAL_PULSE_" + queue_name.value.replace("-", "_").upper()


def _env_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str) -> float | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error
