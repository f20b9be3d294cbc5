"""Controllers for deal-pulse CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Any

from deal_pulse.briefs.service import BriefService
from deal_pulse.config import Settings
from deal_pulse.jobs.models import (
    DocumentOperation,
    EmailOperation,
    JobHandle,
    JobStatus,
    QueueName,
    SyncType,
)
from deal_pulse.jobs.producers import JobProducer
from deal_pulse.jobs.repository import QueueRepository
from deal_pulse.jobs.worker import WorkerSupervisor
from deal_pulse.models import BriefView, DealStatus, SourceConnectionWrite, SourceType
from deal_pulse.processors.registry import build_processors
from deal_pulse.repository import DealRepository
from deal_pulse.scheduler import (
    DailyBriefScheduler,
    fan_out_daily_briefs,
    trigger_daily_briefs,
)
from deal_pulse.storage.common import utc_now


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for running worker pools."""

    db_path: Path | None
    queues: tuple[str, ...]
    max_idle_polls: int | None = None


@dataclass(slots=True)
class QueueStatsCommand:
    db_path: Path | None
    output_format: str = "table"


@dataclass(slots=True)
class QueueListCommand:
    """CLI input for job listing."""

    db_path: Path | None
    queue: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class QueueJobCommand:
    """CLI input for inspect/retry of one job."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class QueueClearFailedCommand:
    db_path: Path | None
    queue: str


@dataclass(slots=True)
class EnqueueBriefCommand:
    db_path: Path | None
    deal_id: str
    brief_date: date | None


@dataclass(slots=True)
class EnqueueSyncCommand:
    db_path: Path | None
    deal_id: str
    source_type: str
    sync_type: str


@dataclass(slots=True)
class EnqueueDocumentCommand:
    db_path: Path | None
    document_id: str
    deal_id: str
    operation: str


@dataclass(slots=True)
class EnqueueEmailCommand:
    db_path: Path | None
    email_id: str
    deal_id: str
    operation: str


@dataclass(slots=True)
class BriefsTriggerCommand:
    """CLI input for manual fan-out across active deals."""

    db_path: Path | None
    brief_date: date | None


@dataclass(slots=True)
class BriefsGenerateCommand:
    """CLI input for synchronous brief generation, bypassing the queue."""

    db_path: Path | None
    deal_id: str
    brief_date: date | None


@dataclass(slots=True)
class BriefsShowCommand:
    db_path: Path | None
    deal_id: str
    brief_date: date | None
    output_format: str = "table"


@dataclass(slots=True)
class SchedulerRunCommand:
    db_path: Path | None
    max_fires: int | None


@dataclass(slots=True)
class SchedulerNextCommand:
    db_path: Path | None
    count: int


@dataclass(slots=True)
class DealAddCommand:
    db_path: Path | None
    name: str
    status: str
    deal_id: str | None = None


@dataclass(slots=True)
class DealListCommand:
    db_path: Path | None
    status: str | None


@dataclass(slots=True)
class SourceConnectCommand:
    """CLI input for registering credentials and config of one source."""

    db_path: Path | None
    deal_id: str
    source_type: str
    access_token: str | None
    refresh_token: str | None
    expires_in_seconds: int | None
    config_json: str | None
    inactive: bool = False


@dataclass(slots=True)
class SourceListCommand:
    db_path: Path | None
    deal_id: str


class DealPulseCliController:
    """Coordinates queue, worker, brief and scheduler CLI operations."""

    def run_workers(self, command: WorkerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        queues = tuple(QueueName(name) for name in command.queues) or tuple(QueueName)
        with _repositories(settings) as (deals, jobs):
            producer = _producer(jobs, settings)
            processors = build_processors(
                settings,
                deal_repository=deals,
                producer=producer,
                queues=queues,
            )
            supervisor = WorkerSupervisor(
                repository=jobs,
                processors=processors,
                policies=settings.queues,
                worker_id=settings.worker.worker_id,
                queues=queues,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                stale_after_seconds=settings.worker.stale_after_seconds,
                graceful_shutdown_seconds=settings.worker.graceful_shutdown_seconds,
            )
            summaries = supervisor.run(max_idle_polls=command.max_idle_polls)

        lines = []
        for queue_name, summary in summaries.items():
            lines.append(
                f"Worker summary [{queue_name.value}]: "
                f"processed={summary.processed} succeeded={summary.succeeded} "
                f"failed={summary.failed} retried={summary.retried} "
                f"timeouts={summary.timeouts} idle_polls={summary.idle_polls}",
            )
        return lines

    def queue_stats(self, command: QueueStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (_, jobs):
            stats = _producer(jobs, settings).get_queue_stats()

        if command.output_format == "json":
            payload = {name: counts.to_dict() for name, counts in stats.items()}
            return [json.dumps(payload, ensure_ascii=False, indent=2)]
        lines = ["Queue stats:"]
        for name, counts in stats.items():
            lines.append(
                f"  {name}: waiting={counts.waiting} active={counts.active} "
                f"completed={counts.completed} failed={counts.failed} delayed={counts.delayed}",
            )
        return lines

    def list_jobs(self, command: QueueListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        queue_name = QueueName(command.queue) if command.queue else None
        status = JobStatus(command.status) if command.status else None
        with _repositories(settings) as (_, jobs):
            rows = jobs.list_jobs(queue_name=queue_name, status=status, limit=command.limit)

        lines = [f"Jobs: {len(rows)}"]
        for job in rows:
            lines.append(
                f"  {job.job_id} queue={job.queue_name.value} type={job.job_type} "
                f"status={job.status.value} attempt={job.attempt}/{job.max_attempts} "
                f"progress={job.progress} run_after={job.run_after.isoformat()}",
            )
        return lines

    def inspect_job(self, command: QueueJobCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (_, jobs):
            details = jobs.get_job_details(command.job_id)
        if details is None:
            return [f"Job not found: {command.job_id}"]

        job = details.job
        lines = [
            f"Job: {job.job_id}",
            f"Queue: {job.queue_name.value}",
            f"Type: {job.job_type}",
            f"Status: {job.status.value}",
            f"Attempt: {job.attempt}/{job.max_attempts}",
            f"Progress: {job.progress}",
            f"Dedup key: {job.dedup_key or '-'}",
            f"Payload: {json.dumps(job.payload.to_dict(), ensure_ascii=False)}",
            f"Result: {json.dumps(job.result, ensure_ascii=False) if job.result else '-'}",
            f"Failure class: {job.failure_class.value if job.failure_class else '-'}",
            f"Error: {job.error_summary or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def retry_job(self, command: QueueJobCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (_, jobs):
            jobs.retry_failed(job_id=command.job_id)
        return [f"Job re-queued: {command.job_id}"]

    def clear_failed(self, command: QueueClearFailedCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        queue_name = QueueName(command.queue)
        with _repositories(settings) as (_, jobs):
            removed = jobs.clear_failed(queue_name=queue_name)
        return [f"Cleared {removed} failed jobs from {queue_name.value}"]

    def enqueue_brief(self, command: EnqueueBriefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (_, jobs):
            handle = _producer(jobs, settings).enqueue_daily_brief(
                command.deal_id,
                command.brief_date,
            )
        return [_handle_line(handle)]

    def enqueue_sync(self, command: EnqueueSyncCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (_, jobs):
            handle = _producer(jobs, settings).enqueue_source_sync(
                command.deal_id,
                SourceType(command.source_type),
                SyncType(command.sync_type),
            )
        return [_handle_line(handle)]

    def enqueue_document(self, command: EnqueueDocumentCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (_, jobs):
            handle = _producer(jobs, settings).enqueue_document_processing(
                command.document_id,
                command.deal_id,
                DocumentOperation(command.operation),
            )
        return [_handle_line(handle)]

    def enqueue_email(self, command: EnqueueEmailCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (_, jobs):
            handle = _producer(jobs, settings).enqueue_email_processing(
                command.email_id,
                command.deal_id,
                EmailOperation(command.operation),
            )
        return [_handle_line(handle)]

    def trigger_briefs(self, command: BriefsTriggerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repositories(settings) as (deals, jobs):
            producer = _producer(jobs, settings)
            if command.brief_date is not None:
                result = fan_out_daily_briefs(
                    deal_repository=deals,
                    producer=producer,
                    brief_date=command.brief_date,
                )
            else:
                result = trigger_daily_briefs(
                    deal_repository=deals,
                    producer=producer,
                    timezone=settings.scheduler.timezone,
                )

        lines = [f"{result.message} ({result.brief_date.isoformat()})"]
        for entry in result.results:
            if entry.success:
                suffix = " (deduplicated)" if entry.deduplicated else ""
                lines.append(f"  {entry.deal_id} {entry.deal_name}: job {entry.job_id}{suffix}")
            else:
                lines.append(f"  {entry.deal_id} {entry.deal_name}: error {entry.error}")
        return lines

    def generate_brief(self, command: BriefsGenerateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (deals, _):
            brief = BriefService(deals, timezone=settings.scheduler.timezone).generate(
                command.deal_id,
                brief_date=command.brief_date,
            )
        return [
            f"Brief published: brief_id={brief.brief_id} deal={brief.deal_id} "
            f"date={brief.brief_date.isoformat()}",
        ]

    def show_brief(self, command: BriefsShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (deals, _):
            if command.brief_date is not None:
                brief = deals.get_brief(deal_id=command.deal_id, brief_date=command.brief_date)
            else:
                latest = deals.list_briefs(command.deal_id, limit=1)
                brief = latest[0] if latest else None
        if brief is None:
            return [f"No brief for deal {command.deal_id}"]
        if command.output_format == "json":
            return [json.dumps(_brief_payload(brief), ensure_ascii=False, indent=2)]
        return _render_brief(brief)

    def run_scheduler(self, command: SchedulerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repositories(settings) as (deals, jobs):
            scheduler = DailyBriefScheduler(
                deal_repository=deals,
                producer=_producer(jobs, settings),
                cron=settings.scheduler.cron,
                timezone=settings.scheduler.timezone,
            )
            try:
                results = scheduler.run(max_fires=command.max_fires)
            except KeyboardInterrupt:
                scheduler.request_stop()
                results = []
        return [f"Scheduler fired {len(results)} times"] + [
            f"  {result.brief_date.isoformat()}: {result.message}" for result in results
        ]

    def next_fire_times(self, command: SchedulerNextCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repositories(settings) as (deals, jobs):
            scheduler = DailyBriefScheduler(
                deal_repository=deals,
                producer=_producer(jobs, settings),
                cron=settings.scheduler.cron,
                timezone=settings.scheduler.timezone,
            )
            fire_at = utc_now()
            lines = [f"Cron: {settings.scheduler.cron} ({settings.scheduler.timezone})"]
            for _ in range(command.count):
                fire_at = scheduler.next_fire_time(fire_at)
                lines.append(
                    f"  {fire_at.isoformat()} -> brief date "
                    f"{scheduler.brief_date_for(fire_at).isoformat()}",
                )
        return lines

    def add_deal(self, command: DealAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (deals, _):
            deal = deals.create_deal(
                name=command.name,
                status=DealStatus(command.status),
                deal_id=command.deal_id,
            )
        return [f"Deal created: deal_id={deal.deal_id} name={deal.name} status={deal.status.value}"]

    def list_deals(self, command: DealListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = DealStatus(command.status) if command.status else None
        with _repositories(settings) as (deals, _):
            rows = deals.list_deals(status=status)
        lines = [f"Deals: {len(rows)}"]
        lines.extend(f"  {deal.deal_id} {deal.name} status={deal.status.value}" for deal in rows)
        return lines

    def connect_source(self, command: SourceConnectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        config = json.loads(command.config_json) if command.config_json else {}
        if not isinstance(config, dict):
            raise ValueError("Source config must be a JSON object.")
        expires_at = (
            utc_now() + timedelta(seconds=command.expires_in_seconds)
            if command.expires_in_seconds is not None
            else None
        )
        with _repositories(settings) as (deals, _):
            if deals.get_deal(command.deal_id) is None:
                return [f"Deal not found: {command.deal_id}"]
            connection = deals.upsert_source_connection(
                deal_id=command.deal_id,
                connection=SourceConnectionWrite(
                    source_type=SourceType(command.source_type),
                    access_token=command.access_token,
                    refresh_token=command.refresh_token,
                    token_expires_at=expires_at,
                    config=config,
                    is_active=not command.inactive,
                ),
            )
        return [
            f"Source connected: connection_id={connection.connection_id} "
            f"type={connection.source_type.value} active={connection.is_active}",
        ]

    def list_sources(self, command: SourceListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repositories(settings) as (deals, _):
            rows = deals.list_source_connections(command.deal_id)
        lines = [f"Sources: {len(rows)}"]
        for connection in rows:
            synced = connection.last_synced_at.isoformat() if connection.last_synced_at else "-"
            lines.append(
                f"  {connection.source_type.value} active={connection.is_active} "
                f"auth_failures={connection.consecutive_auth_failures} last_synced_at={synced}",
            )
        return lines


def _handle_line(handle: JobHandle) -> str:
    return (
        f"Job {'deduplicated' if handle.deduplicated else 'enqueued'}: "
        f"job_id={handle.job_id} queue={handle.queue_name.value} "
        f"type={handle.job_type} status={handle.status.value}"
    )


def _brief_payload(brief: BriefView) -> dict[str, Any]:
    return {
        "brief_id": brief.brief_id,
        "deal_id": brief.deal_id,
        "brief_date": brief.brief_date.isoformat(),
        "status": brief.status.value,
        "published_at": brief.published_at.isoformat() if brief.published_at else None,
        "progress_snapshot": brief.progress_snapshot,
        "changes": brief.changes,
        "blockers": brief.blockers,
        "risks": brief.risks,
        "communications": brief.communications,
    }


def _render_brief(brief: BriefView) -> list[str]:
    progress = brief.progress_snapshot
    changes = brief.changes
    lines = [
        f"Brief {brief.brief_date.isoformat()} for deal {brief.deal_id} ({brief.status.value})",
        f"Progress: {progress.get('overall', 0)}% "
        f"(change {progress.get('change_vs_previous', 0):+d})",
    ]
    for name, pct in sorted(progress.get("workstreams", {}).items()):
        lines.append(f"  {name}: {pct}%")
    lines.append(
        f"Changes: {len(changes.get('new_documents', []))} new, "
        f"{len(changes.get('updated_documents', []))} updated, "
        f"{changes.get('reviewed_count', 0)} reviewed",
    )
    lines.append("Blockers:")
    for item in brief.blockers.get("items", []):
        owner = f" owner={item['owner']}" if item.get("owner") else ""
        lines.append(
            f"  [{item['workstream']}] {item['title']} ({item['age_days']}d){owner}",
        )
    lines.append("Risks:")
    for item in brief.risks.get("items", []):
        lines.append(f"  [{item['severity']}] {item['title']} - {item['source']}")
    lines.append("Notable communications:")
    for item in brief.communications.get("notable", []):
        lines.append(f"  [{item['reason']}] {item['subject']} from {item['sender']}")
    return lines


def _producer(jobs: QueueRepository, settings: Settings) -> JobProducer:
    return JobProducer(jobs, policies=settings.queues, timezone=settings.scheduler.timezone)


@contextmanager
def _repositories(settings: Settings) -> Iterator[tuple[DealRepository, QueueRepository]]:
    deals = DealRepository(settings.db_path, sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    jobs = QueueRepository(settings.db_path, sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    deals.init_schema()
    try:
        yield deals, jobs
    finally:
        jobs.close()
        deals.close()
