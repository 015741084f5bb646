"""Persistent job store: the single source of truth for status transitions."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from flow_batch.jobs.models import (
    DownloadCreate,
    DownloadState,
    DownloadView,
    IngestResult,
    JobDetails,
    JobEventView,
    JobStats,
    JobStatus,
    JobView,
    OperationUpdate,
    OperationView,
    RecoveryResult,
    SUCCESS_OPERATION_STATES,
    aggregate_operation_states,
)
from flow_batch.jobs.naming import tail_50, tail_slug, text_hash
from flow_batch.storage.alembic_runner import upgrade_head
from flow_batch.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from flow_batch.storage.sqlmodel_models import Download, Job, JobEvent, Operation

logger = logging.getLogger(__name__)

_ACTIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.SUBMITTING, JobStatus.IN_PROGRESS)
_JOB_STATUS_VALUES = frozenset(status.value for status in JobStatus)
_DOWNLOAD_STATE_VALUES = frozenset(state.value for state in DownloadState)
ACK_TIMEOUT_REASON = "submit acknowledgement not received"


class JobStore:
    """Job, operation and download persistence backed by SQLModel + SQLite.

    Every transition is a conditional update on a single row. A transition that
    finds the row already past the expected state is a no-op and returns
    `False`, so duplicate or late events never raise.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self._changed = threading.Condition()
        self._version = 0

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # -- ingestion -------------------------------------------------------------

    def ingest_jobs(self, texts: Sequence[str]) -> IngestResult:
        """Create the initial job set from an ordered input list.

        Job `index` is the 1-based position in `texts`. Indexes that already
        exist (an interrupted earlier run) are skipped, never duplicated.
        """

        normalized = [text.strip() for text in texts]
        for position, text in enumerate(normalized, start=1):
            if not text:
                raise ValueError(f"Input #{position} is empty.")

        now = utc_now()
        with Session(self.engine) as session:
            existing = set(session.exec(select(Job.job_index)).all())
            rows: list[Job] = []
            seen_hashes: dict[str, int] = {}
            for position, text in enumerate(normalized, start=1):
                digest = text_hash(text)
                if digest in seen_hashes:
                    logger.warning(
                        "Input #%d repeats input #%d; artifacts of both may be attributed "
                        "to the first",
                        position,
                        seen_hashes[digest],
                    )
                seen_hashes.setdefault(digest, position)
                if position in existing:
                    continue
                rows.append(
                    Job(
                        job_index=position,
                        text=text,
                        text_hash=digest,
                        tail50=tail_50(text),
                        tail_key=tail_slug(text),
                        status=JobStatus.QUEUED.value,
                        created_at=now,
                        updated_at=now,
                    ),
                )
            session.add_all(rows)
            session.flush()
            for row in rows:
                self._add_event(
                    session=session,
                    job_id=_row_id(row),
                    event_type="ingested",
                    status_from=None,
                    status_to=JobStatus.QUEUED,
                    details={"index": row.job_index},
                )
            session.commit()
        self._notify()
        return IngestResult(inserted=len(rows), skipped=len(normalized) - len(rows))

    # -- job queries -----------------------------------------------------------

    def get_job(self, job_id: int) -> JobView | None:
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            return _to_job_view(row) if row is not None else None

    def get_job_by_index(self, index: int) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(select(Job).where(Job.job_index == index)).one_or_none()
            return _to_job_view(row) if row is not None else None

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        limit: int | None = None,
    ) -> list[JobView]:
        """List jobs in input order, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(Job).order_by(col(Job.job_index).asc())
            if status is not None:
                statement = statement.where(Job.status == status.value)
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def next_queued(self) -> JobView | None:
        """Lowest-index queued job, FIFO by original input order."""

        with Session(self.engine) as session:
            row = session.exec(
                select(Job)
                .where(Job.status == JobStatus.QUEUED.value)
                .order_by(col(Job.job_index).asc())
                .limit(1),
            ).one_or_none()
            return _to_job_view(row) if row is not None else None

    def current_submitting(self) -> JobView | None:
        """The job currently occupying the single submission surface, if any."""

        with Session(self.engine) as session:
            row = session.exec(
                select(Job)
                .where(Job.status == JobStatus.SUBMITTING.value)
                .order_by(col(Job.job_index).asc())
                .limit(1),
            ).one_or_none()
            return _to_job_view(row) if row is not None else None

    def last_ack_timeout(self) -> JobView | None:
        """Most recent job failed because its acknowledgement never arrived."""

        with Session(self.engine) as session:
            row = session.exec(
                select(Job)
                .where(
                    Job.status == JobStatus.FAILED.value,
                    Job.error == ACK_TIMEOUT_REASON,
                )
                .order_by(col(Job.finished_at).desc())
                .limit(1),
            ).one_or_none()
            return _to_job_view(row) if row is not None else None

    def stats(self) -> JobStats:
        """Counts by status, used for completion detection and backpressure."""

        result = JobStats()
        with Session(self.engine) as session:
            job_counts = session.exec(
                select(Job.status, func.count()).group_by(Job.status),
            ).all()
            download_counts = session.exec(
                select(Download.state, func.count()).group_by(Download.state),
            ).all()
        for status, count in job_counts:
            result.total += count
            if status in _JOB_STATUS_VALUES:
                setattr(result, status, count)
        for state, count in download_counts:
            if state in _DOWNLOAD_STATE_VALUES:
                setattr(result, f"downloads_{state}", count)
        return result

    # -- job transitions -------------------------------------------------------

    def mark_submitting(self, job_id: int) -> bool:
        """queued -> submitting."""

        return self._transition(
            job_id=job_id,
            expected=(JobStatus.QUEUED,),
            target=JobStatus.SUBMITTING,
            event_type="submitting",
            values={"submitted_at": None, "error": None},
        )

    def record_submitted(self, job_id: int) -> bool:
        """Record the time the actuator accepted the submission."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.id) == job_id,
                    col(Job.status).in_(
                        (JobStatus.SUBMITTING.value, JobStatus.IN_PROGRESS.value),
                    ),
                )
                .values(submitted_at=to_db_datetime(now), updated_at=to_db_datetime(now)),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        self._notify()
        return True

    def mark_in_progress(self, job_id: int, operations: Sequence[OperationUpdate]) -> bool:
        """submitting -> in_progress, attaching the acknowledged operations.

        Returns `False` without side effects when the job is no longer
        submitting or when any `op_name` is already known.
        """

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.id) == job_id,
                    col(Job.status) == JobStatus.SUBMITTING.value,
                )
                .values(
                    status=JobStatus.IN_PROGRESS.value,
                    submitted_at=func.coalesce(Job.submitted_at, to_db_datetime(now)),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False

            first_take = (
                session.exec(
                    select(func.max(Operation.take_index)).where(Operation.job_id == job_id),
                ).one()
                or 0
            ) + 1
            for offset, operation in enumerate(operations):
                session.add(
                    Operation(
                        job_id=job_id,
                        take_index=first_take + offset,
                        op_name=operation.op_name,
                        state=operation.state,
                        artifact_url=operation.artifact_url,
                        model=operation.model,
                        duration_seconds=operation.duration_seconds,
                        created_at=now,
                    ),
                )
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="acknowledged",
                status_from=JobStatus.SUBMITTING,
                status_to=JobStatus.IN_PROGRESS,
                details={"op_names": [operation.op_name for operation in operations]},
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        self._notify()
        return True

    def mark_failed(self, job_id: int, reason: str) -> bool:
        """Any non-terminal state -> failed, keeping the reason."""

        return self._transition(
            job_id=job_id,
            expected=_ACTIVE_JOB_STATUSES,
            target=JobStatus.FAILED,
            event_type="failed",
            values={"error": reason, "finished_at": to_db_datetime(utc_now())},
            details={"reason": reason},
        )

    def aggregate_status(self, job_id: int) -> JobStatus | None:
        """Terminal status implied by the job's operations, without writing it."""

        with Session(self.engine) as session:
            states = list(
                session.exec(select(Operation.state).where(Operation.job_id == job_id)).all(),
            )
        return aggregate_operation_states(states)

    def apply_aggregate_status(self, job_id: int) -> JobStatus | None:
        """Move an in-progress job to its aggregate terminal status.

        Returns the new status only for the call that performed the
        transition, so callers can log it exactly once.
        """

        derived = self.aggregate_status(job_id)
        if derived is None:
            return None
        values: dict[str, object] = {"finished_at": to_db_datetime(utc_now())}
        if derived == JobStatus.FAILED:
            values["error"] = "one or more operations failed"
        changed = self._transition(
            job_id=job_id,
            expected=(JobStatus.IN_PROGRESS,),
            target=derived,
            event_type="completed" if derived == JobStatus.DONE else "failed",
            values=values,
        )
        return derived if changed else None

    def expire_stale_submissions(self, *, older_than: timedelta) -> list[JobView]:
        """Fail submitting jobs whose acknowledgement never arrived."""

        return self._expire(
            status=JobStatus.SUBMITTING,
            older_than=older_than,
            reason=ACK_TIMEOUT_REASON,
        )

    def expire_stale_generations(self, *, older_than: timedelta) -> list[JobView]:
        """Fail in-progress jobs that exceeded the generation timeout."""

        return self._expire(
            status=JobStatus.IN_PROGRESS,
            older_than=older_than,
            reason="generation timed out",
        )

    def retry_job(self, *, index: int) -> JobView:
        """Operator retry: failed -> queued, dropping non-successful operations."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(select(Job).where(Job.job_index == index)).one_or_none()
            if row is None:
                raise RuntimeError(f"Job not found: index={index}")
            if row.status != JobStatus.FAILED.value:
                raise RuntimeError(f"Only failed jobs can be retried, got {row.status}.")
            job_id = _row_id(row)

            result = session.exec(
                sa_update(Job)
                .where(col(Job.id) == job_id, col(Job.status) == JobStatus.FAILED.value)
                .values(
                    status=JobStatus.QUEUED.value,
                    retry_count=row.retry_count + 1,
                    submitted_at=None,
                    finished_at=None,
                    error=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(
                    f"Job state changed concurrently while retrying; please retry (index={index}).",
                )
            dropped = session.exec(
                sa_delete(Operation).where(
                    col(Operation.job_id) == job_id,
                    (col(Operation.state).is_(None))
                    | (col(Operation.state).not_in(tuple(SUCCESS_OPERATION_STATES))),
                ),
            )
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="manual_retry",
                status_from=JobStatus.FAILED,
                status_to=JobStatus.QUEUED,
                details={"dropped_operations": dropped.rowcount},
            )
            session.commit()
            session.refresh(row)
            view = _to_job_view(row)
        self._notify()
        return view

    def recover_interrupted(self) -> RecoveryResult:
        """Reset state left behind by a process that stopped mid-run.

        Every `submitting` job returns to `queued`. An acknowledgement attaches
        operations and leaves `submitting` in one commit, so any operations a
        submitting job owns were kept from an earlier attempt.
        """

        recovery = RecoveryResult()
        for job in self.list_jobs(status=JobStatus.SUBMITTING):
            if self._transition(
                job_id=job.id,
                expected=(JobStatus.SUBMITTING,),
                target=JobStatus.QUEUED,
                event_type="recovered",
                values={"submitted_at": None},
            ):
                recovery.requeued_jobs += 1

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Download)
                .where(col(Download.state) == DownloadState.RUNNING.value)
                .values(state=DownloadState.QUEUED.value, started_at=None, worker_id=None),
            )
            recovery.requeued_downloads = result.rowcount
            session.commit()
        if recovery.requeued_downloads:
            logger.warning(
                "Requeued %d interrupted downloads at %s",
                recovery.requeued_downloads,
                now.isoformat(),
            )
        self._notify()
        return recovery

    # -- operations ------------------------------------------------------------

    def resolve_operation(self, op_name: str) -> JobView | None:
        """Owning job for a service operation name, or `None` when unknown."""

        with Session(self.engine) as session:
            row = session.exec(
                select(Job).join(Operation, col(Operation.job_id) == col(Job.id)).where(
                    Operation.op_name == op_name,
                ),
            ).one_or_none()
            return _to_job_view(row) if row is not None else None

    def update_operation(self, update: OperationUpdate) -> OperationView | None:
        """Apply one reported state to a known operation.

        Fields the report leaves empty keep their stored value, so a later poll
        without an artifact URL does not erase an earlier one.
        """

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(Operation).where(Operation.op_name == update.op_name),
            ).one_or_none()
            if row is None:
                return None
            if update.state is not None:
                row.state = update.state
            if update.artifact_url:
                row.artifact_url = update.artifact_url
            if update.model:
                row.model = update.model
            if update.duration_seconds:
                row.duration_seconds = update.duration_seconds
            row.last_update_at = to_db_datetime(now)
            session.add(row)
            session.commit()
            session.refresh(row)
            view = _to_operation_view(row)
        self._notify()
        return view

    def list_operations(self, job_id: int) -> list[OperationView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Operation)
                .where(Operation.job_id == job_id)
                .order_by(col(Operation.take_index).asc()),
            ).all()
        return [_to_operation_view(row) for row in rows]

    def find_operation_by_url(self, *, job_id: int, artifact_url: str) -> OperationView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Operation).where(
                    Operation.job_id == job_id,
                    Operation.artifact_url == artifact_url,
                ),
            ).first()
            return _to_operation_view(row) if row is not None else None

    def free_take_index(self, *, job_id: int, preferred: int) -> int:
        """Take number for an artifact URL that no operation reported.

        `preferred` is kept unless a download or a URL-bearing operation of
        the job already holds it; otherwise the next number past every take
        the job has used.
        """

        with Session(self.engine) as session:
            download_takes = set(
                session.exec(select(Download.take_index).where(Download.job_id == job_id)).all(),
            )
            operations = session.exec(
                select(Operation.take_index, Operation.artifact_url).where(
                    Operation.job_id == job_id,
                ),
            ).all()
        taken = download_takes | {take for take, url in operations if url}
        if preferred not in taken:
            return preferred
        return max(taken | {take for take, _ in operations}) + 1

    # -- downloads -------------------------------------------------------------

    def enqueue_download(self, payload: DownloadCreate) -> DownloadView | None:
        """Create a queued download.

        Returns `None` when the job already has a download for the same take
        or for the same source URL, so one artifact never gets two filenames.
        """

        now = utc_now()
        with Session(self.engine) as session:
            existing = session.exec(
                select(Download).where(
                    Download.job_id == payload.job_id,
                    (col(Download.take_index) == payload.take_index)
                    | (col(Download.source_url) == payload.source_url),
                ),
            ).first()
            if existing is not None:
                return None
            row = Download(
                job_id=payload.job_id,
                operation_id=payload.operation_id,
                take_index=payload.take_index,
                source_url=payload.source_url,
                target_filename=payload.target_filename,
                state=DownloadState.QUEUED.value,
                attempts=0,
                enqueued_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None
            download_id = _row_id(row)
        self._notify()
        return self.get_download(download_id)

    def get_download(self, download_id: int) -> DownloadView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Download, Job)
                .join(Job, col(Job.id) == col(Download.job_id))
                .where(Download.id == download_id),
            ).one_or_none()
        if row is None:
            return None
        return _to_download_view(*row)

    def list_downloads(
        self,
        *,
        state: DownloadState | None = None,
        job_id: int | None = None,
    ) -> list[DownloadView]:
        """Downloads ordered by job index and take index."""

        with Session(self.engine) as session:
            statement = (
                select(Download, Job)
                .join(Job, col(Job.id) == col(Download.job_id))
                .order_by(col(Job.job_index).asc(), col(Download.take_index).asc())
            )
            if state is not None:
                statement = statement.where(Download.state == state.value)
            if job_id is not None:
                statement = statement.where(Download.job_id == job_id)
            rows = session.exec(statement).all()
        return [_to_download_view(download, job) for download, job in rows]

    def claim_next_download(self, *, worker_id: str) -> DownloadView | None:
        """Atomically claim the oldest queued download."""

        while True:
            now = utc_now()
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(Download)
                    .where(Download.state == DownloadState.QUEUED.value)
                    .order_by(col(Download.id).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(Download)
                    .where(
                        col(Download.id) == candidate.id,
                        col(Download.state) == DownloadState.QUEUED.value,
                    )
                    .values(
                        state=DownloadState.RUNNING.value,
                        worker_id=worker_id,
                        started_at=to_db_datetime(now),
                        finished_at=None,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue
                session.commit()
                download_id = _row_id(candidate)
            self._notify()
            return self.get_download(download_id)

    def record_download_attempt(self, download_id: int, *, error: str | None = None) -> int:
        """Count one fetch attempt and return the new total."""

        with Session(self.engine) as session:
            row = session.get(Download, download_id)
            if row is None:
                raise RuntimeError(f"Download not found: {download_id}")
            row.attempts += 1
            if error is not None:
                row.last_error = error
            session.add(row)
            session.commit()
            return row.attempts

    def complete_download(self, download_id: int, *, local_path: str) -> bool:
        """running -> done."""

        return self._finish_download(
            download_id=download_id,
            target=DownloadState.DONE,
            values={"local_path": local_path, "last_error": None},
        )

    def fail_download(
        self,
        download_id: int,
        *,
        error: str,
        fallback_path: str | None,
    ) -> bool:
        """running -> failed, remembering where the URL fallback was written."""

        return self._finish_download(
            download_id=download_id,
            target=DownloadState.FAILED,
            values={"last_error": error, "fallback_path": fallback_path},
        )

    def get_job_details(self, *, index: int) -> JobDetails | None:
        """Return job details with operations, downloads and event stream."""

        job = self.get_job_by_index(index)
        if job is None:
            return None
        with Session(self.engine) as session:
            event_rows = session.exec(
                select(JobEvent)
                .where(JobEvent.job_id == job.id)
                .order_by(col(JobEvent.created_at).asc(), col(JobEvent.id).asc()),
            ).all()

        events: list[JobEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                JobEventView(
                    event_id=row.id or 0,
                    job_id=row.job_id,
                    event_type=row.event_type,
                    status_from=JobStatus(row.status_from) if row.status_from else None,
                    status_to=JobStatus(row.status_to) if row.status_to else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return JobDetails(
            job=job,
            operations=self.list_operations(job.id),
            downloads=self.list_downloads(job_id=job.id),
            events=events,
        )

    # -- change notification ---------------------------------------------------

    def wait_for_change(self, timeout: float) -> bool:
        """Block until another caller commits a mutation or `timeout` elapses."""

        with self._changed:
            version = self._version
            self._changed.wait_for(lambda: self._version != version, timeout=timeout)
            return self._version != version

    def wait_until(
        self,
        predicate: Callable[[JobStats], bool],
        *,
        timeout: float | None = None,
        recheck_seconds: float = 5.0,
        stop_event: threading.Event | None = None,
    ) -> bool:
        """Block until `predicate(stats())` holds, waking on every store mutation.

        `recheck_seconds` bounds each wait so that changes committed by other
        processes sharing the database are still noticed.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._changed:
                version = self._version
            if predicate(self.stats()):
                return True
            if stop_event is not None and stop_event.is_set():
                return False
            wait_seconds = recheck_seconds
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                wait_seconds = min(wait_seconds, remaining)
            with self._changed:
                self._changed.wait_for(lambda: self._version != version, timeout=wait_seconds)

    def wake(self) -> None:
        """Wake every waiter so it re-checks its predicate and stop flag."""

        self._notify()

    def _notify(self) -> None:
        with self._changed:
            self._version += 1
            self._changed.notify_all()

    # -- internals -------------------------------------------------------------

    def _transition(  # noqa: PLR0913
        self,
        *,
        job_id: int,
        expected: tuple[JobStatus, ...],
        target: JobStatus,
        event_type: str,
        values: dict[str, object] | None = None,
        details: dict[str, object] | None = None,
    ) -> bool:
        now = utc_now()
        with Session(self.engine) as session:
            current = session.get(Job, job_id)
            if current is None or JobStatus(current.status) not in expected:
                return False
            previous = JobStatus(current.status)
            result = session.exec(
                sa_update(Job)
                .where(col(Job.id) == job_id, col(Job.status) == previous.value)
                .values(
                    status=target.value,
                    updated_at=to_db_datetime(now),
                    **(values or {}),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type=event_type,
                status_from=previous,
                status_to=target,
                details=details or {},
            )
            session.commit()
        self._notify()
        return True

    def _expire(self, *, status: JobStatus, older_than: timedelta, reason: str) -> list[JobView]:
        cutoff = to_db_datetime(utc_now() - older_than)
        with Session(self.engine) as session:
            rows = session.exec(
                select(Job).where(
                    Job.status == status.value,
                    col(Job.submitted_at).is_not(None),
                    col(Job.submitted_at) < cutoff,
                ),
            ).all()
            candidates = [_to_job_view(row) for row in rows]
        return [job for job in candidates if self.mark_failed(job.id, reason)]

    def _finish_download(
        self,
        *,
        download_id: int,
        target: DownloadState,
        values: dict[str, object],
    ) -> bool:
        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Download)
                .where(
                    col(Download.id) == download_id,
                    col(Download.state) == DownloadState.RUNNING.value,
                )
                .values(state=target.value, finished_at=to_db_datetime(now), **values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        self._notify()
        return True

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: int,
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
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _row_id(row: Job | Download) -> int:
    if row.id is None:
        raise RuntimeError("Row has not been flushed yet.")
    return row.id


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_job_view(row: Job) -> JobView:
    return JobView(
        id=_row_id(row),
        index=row.job_index,
        text=row.text,
        tail50=row.tail50,
        tail_key=row.tail_key,
        status=JobStatus(row.status),
        submitted_at=_optional_aware(row.submitted_at),
        finished_at=_optional_aware(row.finished_at),
        error=row.error,
        retry_count=row.retry_count,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_operation_view(row: Operation) -> OperationView:
    return OperationView(
        id=row.id or 0,
        job_id=row.job_id,
        take_index=row.take_index,
        op_name=row.op_name,
        state=row.state,
        artifact_url=row.artifact_url,
        model=row.model,
        duration_seconds=row.duration_seconds,
        last_update_at=_optional_aware(row.last_update_at),
    )


def _to_download_view(row: Download, job: Job) -> DownloadView:
    return DownloadView(
        id=_row_id(row),
        job_id=row.job_id,
        job_index=job.job_index,
        tail_key=job.tail_key,
        operation_id=row.operation_id,
        take_index=row.take_index,
        source_url=row.source_url,
        target_filename=row.target_filename,
        state=DownloadState(row.state),
        attempts=row.attempts,
        last_error=row.last_error,
        local_path=row.local_path,
        fallback_path=row.fallback_path,
        enqueued_at=to_utc_aware_datetime(row.enqueued_at),
        finished_at=_optional_aware(row.finished_at),
    )
