"""Initial job, operation and download schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_index", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("text_hash", sa.String(), nullable=False),
        sa.Column("tail50", sa.String(), nullable=False),
        sa.Column("tail_key", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_index"),
    )
    op.create_index("ix_jobs_text_hash", "jobs", ["text_hash"], unique=False)
    op.create_index("ix_jobs_tail_key", "jobs", ["tail_key"], unique=False)
    op.create_index("ix_jobs_status", "jobs", ["status"], unique=False)
    op.create_index("idx_jobs_status_index", "jobs", ["status", "job_index"], unique=False)

    op.create_table(
        "operations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column("take_index", sa.Integer(), nullable=False),
        sa.Column("op_name", sa.Text(), nullable=False),
        sa.Column("state", sa.String(), nullable=True),
        sa.Column("artifact_url", sa.Text(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_update_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("op_name"),
    )
    op.create_index("ix_operations_job_id", "operations", ["job_id"], unique=False)
    op.create_index("ix_operations_state", "operations", ["state"], unique=False)

    op.create_table(
        "downloads",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column("operation_id", sa.Integer(), nullable=True),
        sa.Column("take_index", sa.Integer(), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("target_filename", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("local_path", sa.String(), nullable=True),
        sa.Column("fallback_path", sa.String(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["operation_id"], ["operations.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id", "take_index", name="uq_downloads_job_take"),
    )
    op.create_index("ix_downloads_job_id", "downloads", ["job_id"], unique=False)
    op.create_index("ix_downloads_state", "downloads", ["state"], unique=False)
    op.create_index("idx_downloads_state_id", "downloads", ["state", "id"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_downloads_state_id", table_name="downloads")
    op.drop_index("ix_downloads_state", table_name="downloads")
    op.drop_index("ix_downloads_job_id", table_name="downloads")
    op.drop_table("downloads")
    op.drop_index("ix_operations_state", table_name="operations")
    op.drop_index("ix_operations_job_id", table_name="operations")
    op.drop_table("operations")
    op.drop_index("idx_jobs_status_index", table_name="jobs")
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_index("ix_jobs_tail_key", table_name="jobs")
    op.drop_index("ix_jobs_text_hash", table_name="jobs")
    op.drop_table("jobs")
