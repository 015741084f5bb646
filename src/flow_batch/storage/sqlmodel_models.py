"""SQLModel ORM tables for job, operation and download storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_jobs_status_index", "status", "job_index"),)

    id: int | None = Field(default=None, primary_key=True)
    job_index: int = Field(sa_column=Column(Integer, nullable=False, unique=True))
    text: str = Field(sa_column=Column(Text, nullable=False))
    text_hash: str = Field(index=True)
    tail50: str
    tail_key: str = Field(index=True)
    status: str = Field(index=True)
    submitted_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    error: str | None = Field(default=None, sa_column=Column(Text))
    retry_count: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Operation(SQLModel, table=True):
    __tablename__ = "operations"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    job_id: int = Field(
        sa_column=Column(
            ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    take_index: int
    op_name: str = Field(sa_column=Column(Text, nullable=False, unique=True))
    state: str | None = Field(default=None, index=True)
    artifact_url: str | None = Field(default=None, sa_column=Column(Text))
    model: str | None = None
    duration_seconds: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_update_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )


class Download(SQLModel, table=True):
    __tablename__ = "downloads"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("job_id", "take_index", name="uq_downloads_job_take"),
        Index("idx_downloads_state_id", "state", "id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    job_id: int = Field(
        sa_column=Column(
            ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    operation_id: int | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("operations.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    take_index: int
    source_url: str = Field(sa_column=Column(Text, nullable=False))
    target_filename: str
    state: str = Field(index=True)
    attempts: int = Field(default=0)
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    local_path: str | None = None
    fallback_path: str | None = None
    worker_id: str | None = None
    enqueued_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class JobEvent(SQLModel, table=True):
    __tablename__ = "job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_job_events_job_time", "job_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: int = Field(
        sa_column=Column(
            ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
