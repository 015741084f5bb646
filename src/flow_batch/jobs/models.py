"""Domain models for generation jobs, service operations and downloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    QUEUED = "queued"
    SUBMITTING = "submitting"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class DownloadState(str, Enum):
    """Durable download task states."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


OPERATION_STATE_SUCCESSFUL = "MEDIA_GENERATION_STATUS_SUCCESSFUL"
OPERATION_STATE_FAILED = "MEDIA_GENERATION_STATUS_FAILED"
OPERATION_STATE_CANCELLED = "MEDIA_GENERATION_STATUS_CANCELLED"

SUCCESS_OPERATION_STATES = frozenset({OPERATION_STATE_SUCCESSFUL})
FAILURE_OPERATION_STATES = frozenset({OPERATION_STATE_FAILED, OPERATION_STATE_CANCELLED})

TERMINAL_JOB_STATUSES = frozenset({JobStatus.DONE, JobStatus.FAILED})


def is_operation_successful(state: str | None) -> bool:
    return state in SUCCESS_OPERATION_STATES


def is_operation_failed(state: str | None) -> bool:
    return state in FAILURE_OPERATION_STATES


def aggregate_operation_states(states: list[str | None]) -> JobStatus | None:
    """Derive the terminal job status implied by its operation states.

    Returns `None` while any operation is still pending or when no operations
    exist yet.
    """

    if not states:
        return None
    if any(not is_operation_successful(s) and not is_operation_failed(s) for s in states):
        return None
    if all(is_operation_successful(s) for s in states):
        return JobStatus.DONE
    return JobStatus.FAILED


@dataclass(slots=True)
class JobView:
    """Readable job view for controllers and CLI."""

    id: int
    index: int
    text: str
    tail50: str
    tail_key: str
    status: JobStatus
    submitted_at: datetime | None
    finished_at: datetime | None
    error: str | None
    retry_count: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class OperationView:
    """Service-side unit of progress attached to a job."""

    id: int
    job_id: int
    take_index: int
    op_name: str
    state: str | None
    artifact_url: str | None
    model: str | None
    duration_seconds: int | None
    last_update_at: datetime | None


@dataclass(slots=True)
class OperationUpdate:
    """One operation entry reported by a poll update."""

    op_name: str
    state: str | None = None
    artifact_url: str | None = None
    model: str | None = None
    duration_seconds: int | None = None


@dataclass(slots=True)
class DownloadView:
    """Artifact fetch task joined with its owning job."""

    id: int
    job_id: int
    job_index: int
    tail_key: str
    operation_id: int | None
    take_index: int
    source_url: str
    target_filename: str
    state: DownloadState
    attempts: int
    last_error: str | None
    local_path: str | None
    fallback_path: str | None
    enqueued_at: datetime
    finished_at: datetime | None


@dataclass(slots=True)
class DownloadCreate:
    """Input payload for enqueuing one artifact download."""

    job_id: int
    take_index: int
    source_url: str
    target_filename: str
    operation_id: int | None = None


@dataclass(slots=True)
class JobEventView:
    """Job event entry for audit trail."""

    event_id: int
    job_id: int
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobDetails:
    """Job details with operations, downloads and event stream."""

    job: JobView
    operations: list[OperationView]
    downloads: list[DownloadView]
    events: list[JobEventView]


@dataclass(slots=True)
class IngestResult:
    """Outcome of ingesting the ordered input set."""

    inserted: int
    skipped: int


@dataclass(slots=True)
class RecoveryResult:
    """Counters of interrupted state reset at startup."""

    requeued_jobs: int = 0
    requeued_downloads: int = 0


@dataclass(slots=True)
class JobStats:
    """Job counts by status plus download backlog counters."""

    total: int = 0
    queued: int = 0
    submitting: int = 0
    in_progress: int = 0
    done: int = 0
    failed: int = 0
    downloads_queued: int = 0
    downloads_running: int = 0
    downloads_done: int = 0
    downloads_failed: int = 0

    @property
    def pending_downloads(self) -> int:
        return self.downloads_queued + self.downloads_running

    @property
    def submission_complete(self) -> bool:
        return self.queued == 0 and self.submitting == 0 and self.in_progress == 0

    @property
    def quiescent(self) -> bool:
        return self.submission_complete and self.pending_downloads == 0
