"""Event correlator: advances job state from Observer events."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flow_batch.jobs.models import (
    DownloadCreate,
    JobStatus,
    JobView,
    OperationView,
    is_operation_successful,
)
from flow_batch.jobs.naming import ArtifactNaming
from flow_batch.jobs.repository import JobStore
from flow_batch.orchestrator.contracts import Observer, PollUpdate, SubmitAck

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CorrelationCounters:
    """Running counters, mostly useful for tests and the run summary."""

    acks_applied: int = 0
    acks_dropped: int = 0
    updates_applied: int = 0
    updates_dropped: int = 0
    downloads_enqueued: int = 0


class EventCorrelator:
    """Consumer of Observer events. It never polls the service itself."""

    def __init__(self, *, store: JobStore, naming: ArtifactNaming | None = None) -> None:
        self.store = store
        self.naming = naming or ArtifactNaming()
        self.counters = CorrelationCounters()

    def attach(self, observer: Observer) -> None:
        observer.subscribe(on_submit_ack=self.on_submit_ack, on_poll_update=self.on_poll_update)

    def on_submit_ack(self, event: SubmitAck) -> JobView | None:
        """Attach acknowledged operations to the job currently being submitted."""

        job = self.store.current_submitting()
        if job is None:
            op_names = [operation.op_name for operation in event.operations]
            expired = self.store.last_ack_timeout()
            if expired is not None:
                logger.warning(
                    "Dropping submit acknowledgement %s; likely late for job %d, "
                    "which timed out waiting for it",
                    op_names,
                    expired.index,
                )
            else:
                logger.warning("Submit acknowledgement without a submitting job: %s", op_names)
            self.counters.acks_dropped += 1
            return None

        if not event.operations:
            self.store.mark_failed(job.id, "no operations returned")
            logger.warning("Job %d acknowledged with no operations", job.index)
            self.counters.acks_dropped += 1
            return None

        known = [
            operation.op_name
            for operation in event.operations
            if self.store.resolve_operation(operation.op_name) is not None
        ]
        if known:
            logger.warning("Ignoring duplicate acknowledgement for operations %s", known)
            self.counters.acks_dropped += 1
            return None

        if not self.store.mark_in_progress(job.id, event.operations):
            logger.warning("Job %d was no longer submitting when acknowledged", job.index)
            self.counters.acks_dropped += 1
            return None

        self.counters.acks_applied += 1
        logger.info(
            "Job %d in progress with %d operation(s)",
            job.index,
            len(event.operations),
        )
        for operation in self.store.list_operations(job.id):
            self._enqueue_ready(job, operation)
        self._settle(job)
        return job

    def on_poll_update(self, event: PollUpdate) -> None:
        """Apply reported operation states and settle affected jobs."""

        touched: dict[int, JobView] = {}
        for report in event.operations:
            job = self.store.resolve_operation(report.op_name)
            if job is None:
                logger.warning("Dropping update for unknown operation %s", report.op_name)
                self.counters.updates_dropped += 1
                continue
            operation = self.store.update_operation(report)
            if operation is None:
                self.counters.updates_dropped += 1
                continue
            self.counters.updates_applied += 1
            self._enqueue_ready(job, operation)
            touched[job.id] = job

        for job in touched.values():
            self._settle(job)

    def _enqueue_ready(self, job: JobView, operation: OperationView) -> None:
        if not is_operation_successful(operation.state) or not operation.artifact_url:
            return
        created = self.store.enqueue_download(
            DownloadCreate(
                job_id=job.id,
                take_index=operation.take_index,
                source_url=operation.artifact_url,
                target_filename=self.naming.filename_for(
                    job_index=job.index,
                    tail_key=job.tail_key,
                    take_index=operation.take_index,
                    model=operation.model,
                    duration_seconds=operation.duration_seconds,
                ),
                operation_id=operation.id,
            ),
        )
        if created is not None:
            self.counters.downloads_enqueued += 1
            logger.info("Queued download %s", created.target_filename)

    def _settle(self, job: JobView) -> None:
        status = self.store.apply_aggregate_status(job.id)
        if status == JobStatus.DONE:
            logger.info("Job %d done", job.index)
        elif status == JobStatus.FAILED:
            logger.warning("Job %d failed: one or more operations failed", job.index)
