"""Submission controller: feeds queued jobs to the actuator under a ceiling."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from flow_batch.jobs.models import JobView
from flow_batch.jobs.repository import JobStore
from flow_batch.orchestrator.contracts import Actuator
from flow_batch.orchestrator.failure_classifier import classify_actuator_failure

logger = logging.getLogger(__name__)


class TickOutcome(str, Enum):
    """What one submission tick did."""

    SUBMITTED = "submitted"
    FAILED = "failed"
    BACKPRESSURE = "backpressure"
    AWAITING_ACK = "awaiting_ack"
    IDLE = "idle"


@dataclass(slots=True)
class SubmissionSummary:
    """Aggregated counters of a submission run."""

    ticks: int = 0
    submitted: int = 0
    failed: int = 0
    backpressure_ticks: int = 0
    stopped: bool = False


class SubmissionController:
    """Fixed-interval loop that submits one queued job per tick.

    A tick is skipped while the number of `in_progress` jobs is at the
    ceiling, and while another job still waits for its acknowledgement,
    since the actuator exposes a single submission surface.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStore,
        actuator: Actuator,
        inflight_ceiling: int = 5,
        tick_seconds: float = 5.0,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        ack_timeout_seconds: float = 120.0,
        generation_timeout_seconds: float = 210.0,
        late_ack_grace_seconds: float = 10.0,
        stop_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.actuator = actuator
        self.inflight_ceiling = inflight_ceiling
        self.tick_seconds = tick_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.ack_timeout_seconds = ack_timeout_seconds
        self.generation_timeout_seconds = generation_timeout_seconds
        self.late_ack_grace_seconds = late_ack_grace_seconds
        self.stop_event = stop_event or threading.Event()
        self._sleep = sleep
        self._clock = clock
        self._ack_expired_at: float | None = None

    def tick(self) -> TickOutcome:
        """Run one submission step."""

        self._expire_stale()
        stats = self.store.stats()
        if stats.in_progress >= self.inflight_ceiling:
            logger.debug(
                "Backpressure: %d in progress, ceiling %d",
                stats.in_progress,
                self.inflight_ceiling,
            )
            return TickOutcome.BACKPRESSURE
        if stats.submitting > 0 or self._in_late_ack_window():
            return TickOutcome.AWAITING_ACK

        job = self.store.next_queued()
        if job is None or not self.store.mark_submitting(job.id):
            return TickOutcome.IDLE

        error = self._submit_with_retry(job)
        if error is not None:
            self.store.mark_failed(job.id, error)
            logger.warning("Job %d failed to submit: %s", job.index, error)
            return TickOutcome.FAILED

        self.store.record_submitted(job.id)
        logger.info("Job %d submitted", job.index)
        return TickOutcome.SUBMITTED

    def run(self) -> SubmissionSummary:
        """Tick until no job is queued, submitting or in progress, or until stopped."""

        summary = SubmissionSummary()
        while True:
            if self.stop_event.is_set():
                summary.stopped = True
                return summary
            if self.store.stats().submission_complete:
                return summary

            outcome = self.tick()
            summary.ticks += 1
            if outcome == TickOutcome.SUBMITTED:
                summary.submitted += 1
            elif outcome == TickOutcome.FAILED:
                summary.failed += 1
            elif outcome == TickOutcome.BACKPRESSURE:
                summary.backpressure_ticks += 1

            self.store.wait_until(
                lambda stats: stats.submission_complete,
                timeout=self.tick_seconds,
                stop_event=self.stop_event,
            )

    def _submit_with_retry(self, job: JobView) -> str | None:
        """Drive the actuator, retrying transient UI failures within this tick.

        Returns the last error message when the submission is given up.
        """

        last_error = "submission not attempted"
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.actuator.submit(job.text)
            except Exception as error:  # noqa: BLE001
                classification = classify_actuator_failure(error)
                last_error = str(error) or type(error).__name__
                if not classification.retryable:
                    logger.warning(
                        "Job %d submission failed (%s): %s",
                        job.index,
                        classification.matched_rule,
                        last_error,
                    )
                    return last_error
                logger.warning(
                    "Job %d submission attempt %d/%d failed (%s): %s",
                    job.index,
                    attempt,
                    self.max_attempts,
                    classification.matched_pattern or classification.matched_rule,
                    last_error,
                )
                if attempt < self.max_attempts:
                    self._sleep(self.retry_backoff_seconds * attempt)
                continue
            return None
        return last_error

    def _expire_stale(self) -> None:
        unacknowledged = self.store.expire_stale_submissions(
            older_than=timedelta(seconds=self.ack_timeout_seconds),
        )
        if unacknowledged:
            self._ack_expired_at = self._clock()
        expired = list(unacknowledged)
        if self.generation_timeout_seconds > 0:
            expired += self.store.expire_stale_generations(
                older_than=timedelta(seconds=self.generation_timeout_seconds),
            )
        for job in expired:
            logger.warning("Job %d expired while %s", job.index, job.status.value)

    def _in_late_ack_window(self) -> bool:
        """True shortly after an ack timeout.

        The next job is held back so that a late acknowledgement for the
        expired job finds no submitting job and is dropped.
        """

        if self._ack_expired_at is None:
            return False
        if self._clock() - self._ack_expired_at < self.late_ack_grace_seconds:
            return True
        self._ack_expired_at = None
        return False
