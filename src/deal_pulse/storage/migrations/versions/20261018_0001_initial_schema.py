"""Initial deal, enrichment, brief and job queue schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "deals",
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("deal_id"),
    )
    op.create_index("ix_deals_name", "deals", ["name"])
    op.create_index("ix_deals_status", "deals", ["status"])

    op.create_table(
        "workstreams",
        sa.Column("workstream_id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.deal_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("workstream_id"),
        sa.UniqueConstraint("deal_id", "name", name="uq_workstreams_deal_name"),
    )
    op.create_index("ix_workstreams_deal_id", "workstreams", ["deal_id"])

    op.create_table(
        "documents",
        sa.Column("document_id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("workstream_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="new"),
        sa.Column("source_type", sa.String(), nullable=False, server_default="manual"),
        sa.Column("source_id", sa.String(), nullable=True),
        sa.Column("source_url", sa.String(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_ingested_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.deal_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["workstream_id"],
            ["workstreams.workstream_id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("document_id"),
        sa.UniqueConstraint("deal_id", "source_id", name="uq_documents_deal_source_id"),
    )
    op.create_index("ix_documents_deal_id", "documents", ["deal_id"])
    op.create_index("ix_documents_source_type", "documents", ["source_type"])
    op.create_index("idx_documents_deal_status", "documents", ["deal_id", "status"])

    op.create_table(
        "communications",
        sa.Column("communication_id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("sender", sa.String(), nullable=False),
        sa.Column("snippet", sa.String(), nullable=False, server_default=""),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("thread_id", sa.String(), nullable=True),
        sa.Column("source_type", sa.String(), nullable=False, server_default="gmail"),
        sa.Column("source_id", sa.String(), nullable=True),
        sa.Column("sentiment", sa.String(), nullable=True),
        sa.Column("is_blocker", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("key_points_json", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="new"),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.deal_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("communication_id"),
        sa.UniqueConstraint("deal_id", "source_id", name="uq_communications_deal_source_id"),
    )
    op.create_index("ix_communications_deal_id", "communications", ["deal_id"])
    op.create_index("ix_communications_thread_id", "communications", ["thread_id"])
    op.create_index(
        "idx_communications_deal_received",
        "communications",
        ["deal_id", "received_at"],
    )

    op.create_table(
        "source_connections",
        sa.Column("connection_id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("source_type", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("config_json", sa.Text(), nullable=True),
        sa.Column("consecutive_auth_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.deal_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("connection_id"),
        sa.UniqueConstraint("deal_id", "source_type", name="uq_source_connections_deal_source"),
    )
    op.create_index("ix_source_connections_deal_id", "source_connections", ["deal_id"])

    op.create_table(
        "briefs",
        sa.Column("brief_id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("brief_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="draft"),
        sa.Column("progress_snapshot_json", sa.Text(), nullable=False),
        sa.Column("changes_json", sa.Text(), nullable=False),
        sa.Column("blockers_json", sa.Text(), nullable=False),
        sa.Column("risks_json", sa.Text(), nullable=False),
        sa.Column("communications_json", sa.Text(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.deal_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("brief_id"),
        sa.UniqueConstraint("deal_id", "brief_date", name="uq_briefs_deal_date"),
    )
    op.create_index("ix_briefs_deal_id", "briefs", ["deal_id"])

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("queue_name", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("dedup_key", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("backoff_type", sa.String(), nullable=False, server_default="exponential"),
        sa.Column("backoff_base_seconds", sa.Float(), nullable=False, server_default="5.0"),
        sa.Column("timeout_seconds", sa.Float(), nullable=False, server_default="300.0"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("run_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("error_summary", sa.Text(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_jobs_queue_name", "jobs", ["queue_name"])
    op.create_index("ix_jobs_job_type", "jobs", ["job_type"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_failure_class", "jobs", ["failure_class"])
    op.create_index(
        "idx_jobs_claim",
        "jobs",
        ["queue_name", "status", "run_after", "created_at"],
    )
    op.create_index(
        "uq_jobs_queue_dedup_open",
        "jobs",
        ["queue_name", "dedup_key"],
        unique=True,
        sqlite_where=sa.text("dedup_key IS NOT NULL AND status IN ('waiting', 'active')"),
    )

    op.create_table(
        "job_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_events_job_id", "job_events", ["job_id"])
    op.create_index("ix_job_events_event_type", "job_events", ["event_type"])
    op.create_index("idx_job_events_job_time", "job_events", ["job_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_job_events_job_time", table_name="job_events")
    op.drop_index("ix_job_events_event_type", table_name="job_events")
    op.drop_index("ix_job_events_job_id", table_name="job_events")
    op.drop_table("job_events")
    op.drop_index("uq_jobs_queue_dedup_open", table_name="jobs")
    op.drop_index("idx_jobs_claim", table_name="jobs")
    op.drop_index("ix_jobs_failure_class", table_name="jobs")
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_index("ix_jobs_job_type", table_name="jobs")
    op.drop_index("ix_jobs_queue_name", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_briefs_deal_id", table_name="briefs")
    op.drop_table("briefs")
    op.drop_index("ix_source_connections_deal_id", table_name="source_connections")
    op.drop_table("source_connections")
    op.drop_index("idx_communications_deal_received", table_name="communications")
    op.drop_index("ix_communications_thread_id", table_name="communications")
    op.drop_index("ix_communications_deal_id", table_name="communications")
    op.drop_table("communications")
    op.drop_index("idx_documents_deal_status", table_name="documents")
    op.drop_index("ix_documents_source_type", table_name="documents")
    op.drop_index("ix_documents_deal_id", table_name="documents")
    op.drop_table("documents")
    op.drop_index("ix_workstreams_deal_id", table_name="workstreams")
    op.drop_table("workstreams")
    op.drop_index("ix_deals_status", table_name="deals")
    op.drop_index("ix_deals_name", table_name="deals")
    op.drop_table("deals")
