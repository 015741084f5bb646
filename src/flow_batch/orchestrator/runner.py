"""End-to-end batch run: submit, correlate, harvest, download, export."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from flow_batch.config import Settings
from flow_batch.http.fetcher import ArtifactFetcher
from flow_batch.jobs.models import JobStats, RecoveryResult
from flow_batch.jobs.repository import JobStore
from flow_batch.orchestrator.contracts import Actuator, ActuatorSessionError, Observer
from flow_batch.orchestrator.correlator import EventCorrelator
from flow_batch.orchestrator.downloads import DownloadPool, DownloadPoolSummary
from flow_batch.orchestrator.harvest import HarvestController, HarvestSummary
from flow_batch.orchestrator.manifest import export_manifest
from flow_batch.orchestrator.submission import SubmissionController, SubmissionSummary

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunSummary:
    """Everything a finished (or stopped) run reports."""

    recovery: RecoveryResult
    submission: SubmissionSummary
    harvest: HarvestSummary | None
    downloads: DownloadPoolSummary
    stats: JobStats
    manifest: dict[str, Any] = field(default_factory=dict)
    stopped: bool = False


class BatchOrchestrator:
    """Wires the store, actuator, observer and fetcher into one run.

    Only a failure to establish the actuator session propagates; every
    per-job, per-item and per-download failure is isolated and logged.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStore,
        actuator_factory: Callable[[], Actuator],
        observer: Observer,
        fetcher: ArtifactFetcher,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.actuator_factory = actuator_factory
        self.observer = observer
        self.fetcher = fetcher
        self.settings = settings
        self._sleep = sleep
        self._stop_event = threading.Event()
        naming = settings.artifacts.naming()
        self.correlator = EventCorrelator(store=store, naming=naming)
        self.pool = DownloadPool(
            store=store,
            fetcher=fetcher,
            output_dir=settings.downloads.output_dir,
            workers=settings.downloads.workers,
            max_attempts=settings.downloads.max_attempts,
            backoff_seconds=settings.downloads.backoff_seconds,
            min_bytes=settings.downloads.min_bytes,
            idle_poll_seconds=settings.downloads.idle_poll_seconds,
            sleep=sleep,
        )

    def request_stop(self, *, reason: str = "requested") -> None:
        """Halt submission now; downloads already queued are still drained."""

        if not self._stop_event.is_set():
            logger.warning("Stop %s: halting submission, draining downloads", reason)
        self._stop_event.set()
        self.store.wake()

    def run(self) -> RunSummary:
        recovery = self.store.recover_interrupted()
        actuator = self._open_session()
        self.correlator.attach(self.observer)

        harvest_summary: HarvestSummary | None = None
        self.pool.start()
        try:
            with self._signal_handlers():
                submission = self._submission_controller(actuator).run()
                if not self._stop_event.is_set():
                    harvest_summary = self._harvest(actuator)
                self.store.wait_until(
                    lambda stats: stats.pending_downloads == 0,
                    stop_event=self._stop_event,
                )
        finally:
            downloads = self.pool.stop()

        manifest = export_manifest(self.store, self.settings.artifacts.manifest_path)
        stats = self.store.stats()
        logger.info(
            "Run finished: %d jobs, %d done, %d failed, %d artifacts",
            stats.total,
            stats.done,
            stats.failed,
            manifest["totalArtifacts"],
        )
        return RunSummary(
            recovery=recovery,
            submission=submission,
            harvest=harvest_summary,
            downloads=downloads,
            stats=stats,
            manifest=manifest,
            stopped=self._stop_event.is_set(),
        )

    def _open_session(self) -> Actuator:
        try:
            return self.actuator_factory()
        except ActuatorSessionError:
            raise
        except Exception as error:
            raise ActuatorSessionError(
                f"Actuator session could not be established: {error}",
            ) from error

    def _submission_controller(self, actuator: Actuator) -> SubmissionController:
        settings = self.settings.submission
        return SubmissionController(
            store=self.store,
            actuator=actuator,
            inflight_ceiling=settings.inflight_ceiling,
            tick_seconds=settings.tick_seconds,
            max_attempts=settings.max_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            ack_timeout_seconds=settings.ack_timeout_seconds,
            generation_timeout_seconds=settings.generation_timeout_seconds,
            late_ack_grace_seconds=settings.late_ack_grace_seconds,
            stop_event=self._stop_event,
            sleep=self._sleep,
        )

    def _harvest(self, actuator: Actuator) -> HarvestSummary | None:
        settings = self.settings.harvest
        if settings.settle_seconds > 0:
            logger.info(
                "Submission complete; settling %.1fs before harvest",
                settings.settle_seconds,
            )
            if self._stop_event.wait(settings.settle_seconds):
                return None
        return HarvestController(
            store=self.store,
            actuator=actuator,
            naming=self.settings.artifacts.naming(),
            artifact_url_patterns=settings.artifact_url_patterns,
            scroll_end_attempts=settings.scroll_end_attempts,
            scroll_step=settings.scroll_step,
            idle_steps=settings.idle_steps,
            scroll_pause_seconds=settings.scroll_pause_seconds,
            sleep=self._sleep,
        ).run()

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(reason=f"on {name}")

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
