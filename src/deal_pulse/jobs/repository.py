"""Persistent job queue repository."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from deal_pulse.jobs.models import (
    OPEN_JOB_STATUSES,
    BackoffPolicy,
    BackoffType,
    FailureClass,
    JobDetails,
    JobEventView,
    JobHandle,
    JobOptions,
    JobPayload,
    JobStatus,
    JobView,
    QueueCounts,
    QueueName,
    payload_from_json,
    payload_to_json,
)
from deal_pulse.storage.alembic_runner import upgrade_head
from deal_pulse.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from deal_pulse.storage.sqlmodel_models import Job, JobEvent

logger = logging.getLogger(__name__)

_MAX_ENQUEUE_RACES = 5


class QueueRepository:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue(
        self,
        *,
        queue_name: QueueName,
        job_type: str,
        payload: JobPayload,
        options: JobOptions,
    ) -> JobHandle:
        """Create a waiting job, or return the open job sharing ``options.dedup_key``."""

        for _ in range(_MAX_ENQUEUE_RACES):
            existing = self._find_open_by_dedup_key(queue_name, options.dedup_key)
            if existing is not None:
                logger.debug(
                    "Deduplicated %s job on %s: dedup_key=%s job_id=%s",
                    job_type,
                    queue_name.value,
                    options.dedup_key,
                    existing.job_id,
                )
                return existing

            now = utc_now()
            job_id = str(uuid4())
            with Session(self.engine) as session:
                session.add(
                    Job(
                        job_id=job_id,
                        queue_name=queue_name.value,
                        job_type=job_type,
                        payload_json=payload_to_json(payload),
                        dedup_key=options.dedup_key,
                        status=JobStatus.WAITING.value,
                        attempt=0,
                        max_attempts=options.max_attempts,
                        backoff_type=options.backoff.type.value,
                        backoff_base_seconds=options.backoff.base_seconds,
                        timeout_seconds=options.timeout_seconds,
                        run_after=to_db_datetime(options.run_after or now),
                        created_at=to_db_datetime(now),
                        updated_at=to_db_datetime(now),
                    ),
                )
                try:
                    session.flush()
                except IntegrityError:
                    session.rollback()
                    continue
                self._add_event(
                    session=session,
                    job_id=job_id,
                    event_type="enqueued",
                    status_from=None,
                    status_to=JobStatus.WAITING,
                    details={
                        "job_type": job_type,
                        "dedup_key": options.dedup_key,
                        "max_attempts": options.max_attempts,
                    },
                )
                session.commit()
            return JobHandle(
                job_id=job_id,
                queue_name=queue_name,
                job_type=job_type,
                status=JobStatus.WAITING,
            )
        raise RuntimeError(
            f"Could not enqueue {job_type} on {queue_name.value}: "
            f"dedup_key={options.dedup_key} kept changing state concurrently.",
        )

    def _find_open_by_dedup_key(
        self,
        queue_name: QueueName,
        dedup_key: str | None,
    ) -> JobHandle | None:
        if dedup_key is None:
            return None
        with Session(self.engine) as session:
            row = session.exec(
                select(Job).where(
                    Job.queue_name == queue_name.value,
                    Job.dedup_key == dedup_key,
                    col(Job.status).in_([status.value for status in OPEN_JOB_STATUSES]),
                ),
            ).first()
        if row is None:
            return None
        return JobHandle(
            job_id=row.job_id,
            queue_name=queue_name,
            job_type=row.job_type,
            status=JobStatus(row.status),
            deduplicated=True,
        )

    def claim_next(self, *, queue_name: QueueName, worker_id: str) -> JobView | None:
        """Atomically claim the oldest ready job on ``queue_name``."""

        while True:
            now = to_db_datetime(utc_now())
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(Job)
                    .where(
                        Job.queue_name == queue_name.value,
                        Job.status == JobStatus.WAITING.value,
                        Job.run_after <= now,
                    )
                    .order_by(col(Job.run_after).asc(), col(Job.created_at).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(Job)
                    .where(
                        col(Job.job_id) == candidate.job_id,
                        col(Job.status) == JobStatus.WAITING.value,
                    )
                    .values(
                        status=JobStatus.ACTIVE.value,
                        attempt=candidate.attempt + 1,
                        progress=0,
                        started_at=now,
                        heartbeat_at=now,
                        finished_at=None,
                        worker_id=worker_id,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                self._add_event(
                    session=session,
                    job_id=candidate.job_id,
                    event_type="claimed",
                    status_from=JobStatus.WAITING,
                    status_to=JobStatus.ACTIVE,
                    details={"worker_id": worker_id, "attempt": candidate.attempt + 1},
                )
                session.commit()
                claimed = session.exec(select(Job).where(Job.job_id == candidate.job_id)).one()
                return _to_job_view(claimed)

    def touch(self, *, job_id: str, attempt: int) -> bool:
        """Update heartbeat for an active attempt."""

        now = to_db_datetime(utc_now())
        return self._update_active(job_id=job_id, attempt=attempt, heartbeat_at=now, updated_at=now)

    def update_progress(self, *, job_id: str, attempt: int, progress: int) -> bool:
        """Record 0-100 progress for an active attempt; late writes are ignored."""

        now = to_db_datetime(utc_now())
        return self._update_active(
            job_id=job_id,
            attempt=attempt,
            progress=max(0, min(100, int(progress))),
            heartbeat_at=now,
            updated_at=now,
        )

    def _update_active(self, *, job_id: str, attempt: int, **values: Any) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.ACTIVE.value,
                    col(Job.attempt) == attempt,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete(
        self,
        *,
        job_id: str,
        attempt: int,
        result: dict[str, Any] | None,
        keep_completed: int | None = None,
    ) -> bool:
        """Mark an active attempt as completed."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.ACTIVE.value,
                    col(Job.attempt) == attempt,
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    progress=100,
                    result_json=_dump_json(result),
                    failure_class=None,
                    error_summary=None,
                    finished_at=now,
                    heartbeat_at=now,
                    updated_at=now,
                ),
            )
            if outcome.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="completed",
                status_from=JobStatus.ACTIVE,
                status_to=JobStatus.COMPLETED,
                details={"attempt": attempt},
            )
            session.commit()
            queue_name = session.exec(select(Job.queue_name).where(Job.job_id == job_id)).one()
        if keep_completed is not None:
            self.prune(queue_name=QueueName(queue_name), status=JobStatus.COMPLETED, keep=keep_completed)
        return True

    def schedule_retry(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        attempt: int,
        run_after: datetime,
        failure_class: FailureClass,
        error_summary: str,
    ) -> bool:
        """Requeue an active attempt for automatic retry."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.ACTIVE.value,
                    col(Job.attempt) == attempt,
                )
                .values(
                    status=JobStatus.WAITING.value,
                    run_after=to_db_datetime(run_after),
                    failure_class=failure_class.value,
                    error_summary=error_summary,
                    started_at=None,
                    heartbeat_at=None,
                    worker_id=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="retry_scheduled",
                status_from=JobStatus.ACTIVE,
                status_to=JobStatus.WAITING,
                details={
                    "attempt": attempt,
                    "run_after": to_utc_aware_datetime(run_after).isoformat(),
                    "failure_class": failure_class.value,
                    "error_summary": error_summary,
                },
            )
            session.commit()
            return True

    def fail(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        attempt: int,
        failure_class: FailureClass,
        error_summary: str,
        keep_failed: int | None = None,
    ) -> bool:
        """Move an active attempt to the terminal failed set."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.ACTIVE.value,
                    col(Job.attempt) == attempt,
                )
                .values(
                    status=JobStatus.FAILED.value,
                    failure_class=failure_class.value,
                    error_summary=error_summary,
                    finished_at=now,
                    heartbeat_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="failed",
                status_from=JobStatus.ACTIVE,
                status_to=JobStatus.FAILED,
                details={
                    "attempt": attempt,
                    "failure_class": failure_class.value,
                    "error_summary": error_summary,
                },
            )
            session.commit()
            queue_name = session.exec(select(Job.queue_name).where(Job.job_id == job_id)).one()
        if keep_failed is not None:
            self.prune(queue_name=QueueName(queue_name), status=JobStatus.FAILED, keep=keep_failed)
        return True

    def retry_failed(self, *, job_id: str) -> None:
        """Manual operator retry: failed job gets a fresh attempt budget."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            if row is None:
                raise RuntimeError(f"Job not found: {job_id}")
            if row.status != JobStatus.FAILED.value:
                raise RuntimeError(f"Only failed jobs can be retried manually, got {row.status}.")
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.FAILED.value,
                )
                .values(
                    status=JobStatus.WAITING.value,
                    attempt=0,
                    progress=0,
                    run_after=now,
                    started_at=None,
                    heartbeat_at=None,
                    finished_at=None,
                    failure_class=None,
                    error_summary=None,
                    worker_id=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(
                    "Job state changed concurrently while retrying; "
                    f"please retry command (job_id={job_id}).",
                )
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="manual_retry",
                status_from=JobStatus.FAILED,
                status_to=JobStatus.WAITING,
                details={},
            )
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise RuntimeError(
                    f"Another open job already holds dedup_key={row.dedup_key}; "
                    f"job {job_id} was not retried.",
                ) from error

    def clear_failed(self, *, queue_name: QueueName) -> int:
        """Delete every failed job on a queue, returning how many were removed."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(Job).where(
                    col(Job.queue_name) == queue_name.value,
                    col(Job.status) == JobStatus.FAILED.value,
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def prune(self, *, queue_name: QueueName, status: JobStatus, keep: int) -> int:
        """Keep only the ``keep`` most recently finished jobs in a terminal status."""

        if status in OPEN_JOB_STATUSES:
            raise ValueError(f"Only terminal jobs can be pruned, got {status.value}")
        with Session(self.engine) as session:
            keep_ids = (
                select(Job.job_id)
                .where(Job.queue_name == queue_name.value, Job.status == status.value)
                .order_by(col(Job.finished_at).desc(), col(Job.created_at).desc())
                .limit(max(keep, 0))
            )
            result = session.exec(
                sa_delete(Job).where(
                    col(Job.queue_name) == queue_name.value,
                    col(Job.status) == status.value,
                    col(Job.job_id).not_in(keep_ids),
                ),
            )
            session.commit()
            removed = int(result.rowcount or 0)
        if removed:
            logger.debug(
                "Pruned %d %s jobs on %s (keep=%d)",
                removed,
                status.value,
                queue_name.value,
                keep,
            )
        return removed

    def recover_stale(self, *, queue_name: QueueName, stale_after: timedelta) -> int:
        """Return abandoned active jobs to the queue, or fail them when out of attempts."""

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        recovered = 0
        with Session(self.engine) as session:
            stale_rows = session.exec(
                select(Job).where(
                    Job.queue_name == queue_name.value,
                    Job.status == JobStatus.ACTIVE.value,
                    Job.heartbeat_at < cutoff,
                ),
            ).all()
            stale = [(row.job_id, row.attempt, row.max_attempts) for row in stale_rows]

        for job_id, attempt, max_attempts in stale:
            error_summary = "Worker stopped heartbeating; attempt abandoned."
            if attempt >= max_attempts:
                changed = self.fail(
                    job_id=job_id,
                    attempt=attempt,
                    failure_class=FailureClass.TIMEOUT,
                    error_summary=error_summary,
                )
            else:
                changed = self.schedule_retry(
                    job_id=job_id,
                    attempt=attempt,
                    run_after=now,
                    failure_class=FailureClass.TIMEOUT,
                    error_summary=error_summary,
                )
            if changed:
                recovered += 1
                logger.warning("Recovered stale job %s on %s", job_id, queue_name.value)
        return recovered

    def counts(self, *, queue_name: QueueName) -> QueueCounts:
        """Per-status counters; waiting jobs scheduled in the future count as delayed."""

        now = to_db_datetime(utc_now())
        counts = QueueCounts()
        with Session(self.engine) as session:
            rows = session.exec(
                select(Job.status, func.count())
                .where(Job.queue_name == queue_name.value)
                .group_by(Job.status),
            ).all()
            delayed = session.exec(
                select(func.count()).where(
                    Job.queue_name == queue_name.value,
                    Job.status == JobStatus.WAITING.value,
                    Job.run_after > now,
                ),
            ).one()
        for status, count in rows:
            if status == JobStatus.WAITING.value:
                counts.waiting = int(count)
            elif status == JobStatus.ACTIVE.value:
                counts.active = int(count)
            elif status == JobStatus.COMPLETED.value:
                counts.completed = int(count)
            elif status == JobStatus.FAILED.value:
                counts.failed = int(count)
        counts.delayed = int(delayed)
        counts.waiting -= counts.delayed
        return counts

    def list_jobs(
        self,
        *,
        queue_name: QueueName | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List recent jobs, optionally filtered by queue and status."""

        with Session(self.engine) as session:
            statement = select(Job).order_by(col(Job.created_at).desc()).limit(limit)
            if queue_name is not None:
                statement = statement.where(Job.queue_name == queue_name.value)
            if status is not None:
                statement = statement.where(Job.status == status.value)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def get_job(self, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            return _to_job_view(row) if row is not None else None

    def get_job_details(self, job_id: str) -> JobDetails | None:
        """Return job details with event stream."""

        with Session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None:
                return None
            event_rows = session.exec(
                select(JobEvent)
                .where(JobEvent.job_id == job_id)
                .order_by(col(JobEvent.created_at).asc(), col(JobEvent.id).asc()),
            ).all()
            view = _to_job_view(job)

        events = [
            JobEventView(
                event_id=row.id or 0,
                job_id=row.job_id,
                event_type=row.event_type,
                status_from=JobStatus(row.status_from) if row.status_from is not None else None,
                status_to=JobStatus(row.status_to) if row.status_to is not None else None,
                created_at=to_utc_aware_datetime(row.created_at),
                details=_load_json_object(row.details_json),
            )
            for row in event_rows
        ]
        return JobDetails(job=view, events=events)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: str,
        event_type: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            JobEvent(
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=_dump_json(details) if details else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _dump_json(value: dict[str, Any] | dict[str, object] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def _load_json_object(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else {}


def _to_job_view(row: Job) -> JobView:
    queue_name = QueueName(row.queue_name)
    return JobView(
        job_id=row.job_id,
        queue_name=queue_name,
        job_type=row.job_type,
        payload=payload_from_json(queue_name, row.payload_json),
        dedup_key=row.dedup_key,
        status=JobStatus(row.status),
        attempt=row.attempt,
        max_attempts=row.max_attempts,
        backoff=BackoffPolicy(BackoffType(row.backoff_type), row.backoff_base_seconds),
        timeout_seconds=row.timeout_seconds,
        progress=row.progress,
        run_after=to_utc_aware_datetime(row.run_after),
        started_at=optional_utc(row.started_at),
        heartbeat_at=optional_utc(row.heartbeat_at),
        finished_at=optional_utc(row.finished_at),
        result=_load_json_object(row.result_json) if row.result_json else None,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        error_summary=row.error_summary,
        worker_id=row.worker_id,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
