"""SQLModel ORM tables for deal state and the job queue."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Text, UniqueConstraint, text
from sqlmodel import Field, SQLModel


class Deal(SQLModel, table=True):
    __tablename__ = "deals"  # type: ignore[bad-override]

    deal_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    status: str = Field(default="active", index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Workstream(SQLModel, table=True):
    __tablename__ = "workstreams"  # type: ignore[bad-override]
    __table_args__ = (UniqueConstraint("deal_id", "name", name="uq_workstreams_deal_name"),)

    workstream_id: str = Field(primary_key=True)
    deal_id: str = Field(
        sa_column=Column(
            ForeignKey("deals.deal_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    name: str
    status: str = Field(default="active")
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Document(SQLModel, table=True):
    __tablename__ = "documents"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("deal_id", "source_id", name="uq_documents_deal_source_id"),
        Index("idx_documents_deal_status", "deal_id", "status"),
    )

    document_id: str = Field(primary_key=True)
    deal_id: str = Field(
        sa_column=Column(
            ForeignKey("deals.deal_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    workstream_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("workstreams.workstream_id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    name: str
    status: str = Field(default="new")
    source_type: str = Field(default="manual", index=True)
    source_id: str | None = Field(default=None)
    source_url: str | None = None
    summary: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_ingested_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class Communication(SQLModel, table=True):
    __tablename__ = "communications"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("deal_id", "source_id", name="uq_communications_deal_source_id"),
        Index("idx_communications_deal_received", "deal_id", "received_at"),
    )

    communication_id: str = Field(primary_key=True)
    deal_id: str = Field(
        sa_column=Column(
            ForeignKey("deals.deal_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    subject: str
    sender: str
    snippet: str = ""
    body: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    thread_id: str | None = Field(default=None, index=True)
    source_type: str = Field(default="gmail")
    source_id: str | None = Field(default=None)
    sentiment: str | None = None
    is_blocker: bool = Field(default=False)
    key_points_json: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(default="new")
    received_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SourceConnection(SQLModel, table=True):
    __tablename__ = "source_connections"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("deal_id", "source_type", name="uq_source_connections_deal_source"),
    )

    connection_id: str = Field(primary_key=True)
    deal_id: str = Field(
        sa_column=Column(
            ForeignKey("deals.deal_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    source_type: str
    is_active: bool = Field(default=True)
    access_token: str | None = Field(default=None, sa_column=Column(Text))
    refresh_token: str | None = Field(default=None, sa_column=Column(Text))
    token_expires_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    config_json: str | None = Field(default=None, sa_column=Column(Text))
    consecutive_auth_failures: int = Field(default=0)
    last_synced_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Brief(SQLModel, table=True):
    __tablename__ = "briefs"  # type: ignore[bad-override]
    __table_args__ = (UniqueConstraint("deal_id", "brief_date", name="uq_briefs_deal_date"),)

    brief_id: str = Field(primary_key=True)
    deal_id: str = Field(
        sa_column=Column(
            ForeignKey("deals.deal_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    brief_date: date = Field(sa_column=Column(Date, nullable=False))
    status: str = Field(default="draft")
    progress_snapshot_json: str = Field(sa_column=Column(Text, nullable=False))
    changes_json: str = Field(sa_column=Column(Text, nullable=False))
    blockers_json: str = Field(sa_column=Column(Text, nullable=False))
    risks_json: str = Field(sa_column=Column(Text, nullable=False))
    communications_json: str = Field(sa_column=Column(Text, nullable=False))
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_jobs_claim", "queue_name", "status", "run_after", "created_at"),
        Index(
            "uq_jobs_queue_dedup_open",
            "queue_name",
            "dedup_key",
            unique=True,
            sqlite_where=text("dedup_key IS NOT NULL AND status IN ('waiting', 'active')"),
        ),
    )

    job_id: str = Field(primary_key=True)
    queue_name: str = Field(index=True)
    job_type: str = Field(index=True)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    dedup_key: str | None = Field(default=None)
    status: str = Field(index=True)
    attempt: int = Field(default=0)
    max_attempts: int = Field(default=3)
    backoff_type: str = Field(default="exponential")
    backoff_base_seconds: float = Field(default=5.0)
    timeout_seconds: float = Field(default=300.0)
    progress: int = Field(default=0)
    run_after: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    heartbeat_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    failure_class: str | None = Field(default=None, index=True)
    error_summary: str | None = Field(default=None, sa_column=Column(Text))
    worker_id: str | None = Field(default=None)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobEvent(SQLModel, table=True):
    __tablename__ = "job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_job_events_job_time", "job_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
