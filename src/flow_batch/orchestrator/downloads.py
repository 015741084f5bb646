"""Download pool: bounded workers draining the download queue."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from flow_batch.http.fetcher import ArtifactFetcher, DownloadError
from flow_batch.jobs.models import DownloadView
from flow_batch.jobs.naming import fallback_record_filename
from flow_batch.jobs.repository import JobStore

logger = logging.getLogger(__name__)


class DownloadOutcome(str, Enum):
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class DownloadPoolSummary:
    """Counters across all workers of one pool run."""

    done: int = 0
    skipped: int = 0
    failed: int = 0
    errors: int = 0

    def add(self, outcome: DownloadOutcome) -> None:
        if outcome == DownloadOutcome.DONE:
            self.done += 1
        elif outcome == DownloadOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


class DownloadPool:
    """Fixed-size pool of download workers.

    Workers keep polling for queued downloads until `stop()` is called. After
    that they drain whatever is still queued and exit; a running fetch is
    never interrupted.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStore,
        fetcher: ArtifactFetcher,
        output_dir: Path,
        workers: int = 5,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        min_bytes: int = 1_000,
        idle_poll_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.output_dir = output_dir
        self.workers = max(1, workers)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.min_bytes = min_bytes
        self.idle_poll_seconds = idle_poll_seconds
        self._sleep = sleep
        self._drain = threading.Event()
        self._threads: list[threading.Thread] = []
        self._summary = DownloadPoolSummary()
        self._summary_lock = threading.Lock()

    @property
    def summary(self) -> DownloadPoolSummary:
        return self._summary

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("Download pool already started.")
        self._drain.clear()
        for number in range(1, self.workers + 1):
            thread = threading.Thread(
                target=self._worker_loop,
                kwargs={"worker_id": f"download-{number}"},
                name=f"download-{number}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def stop(self, *, timeout: float | None = None) -> DownloadPoolSummary:
        """Drain the queue and wait for all workers to exit."""

        self._drain.set()
        self.store.wake()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        return self._summary

    def run_until_drained(self) -> DownloadPoolSummary:
        """Process everything currently queued with all workers, then return."""

        self.start()
        return self.stop()

    def process(self, download: DownloadView, *, worker_id: str = "inline") -> DownloadOutcome:
        """Fetch one claimed (running) download with retry and fallback."""

        target = self.output_dir / download.target_filename
        if _is_complete(target, min_bytes=self.min_bytes):
            self.store.complete_download(download.id, local_path=str(target))
            logger.info("Skipping %s: already downloaded", target.name)
            return DownloadOutcome.SKIPPED

        last_error = "download not attempted"
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.fetcher.fetch_to(download.source_url, target)
            except DownloadError as error:
                last_error = str(error)
                self.store.record_download_attempt(download.id, error=last_error)
                logger.warning(
                    "[%s] Download %s attempt %d/%d failed: %s",
                    worker_id,
                    target.name,
                    attempt,
                    self.max_attempts,
                    last_error,
                )
                if attempt < self.max_attempts:
                    self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))
                continue
            self.store.record_download_attempt(download.id)
            self.store.complete_download(download.id, local_path=str(target))
            logger.info("[%s] Downloaded %s", worker_id, target.name)
            return DownloadOutcome.DONE

        try:
            fallback = self._write_fallback(download, target=target, last_error=last_error)
        except OSError:
            logger.exception("Could not write URL record for %s", target.name)
            self.store.fail_download(download.id, error=last_error, fallback_path=None)
            return DownloadOutcome.FAILED
        self.store.fail_download(download.id, error=last_error, fallback_path=str(fallback))
        logger.warning("Download %s failed; URL saved to %s", target.name, fallback.name)
        return DownloadOutcome.FAILED

    def _worker_loop(self, *, worker_id: str) -> None:
        while True:
            download = self.store.claim_next_download(worker_id=worker_id)
            if download is None:
                if self._drain.is_set():
                    return
                self.store.wait_for_change(self.idle_poll_seconds)
                continue
            try:
                outcome = self.process(download, worker_id=worker_id)
            except Exception:  # noqa: BLE001
                logger.exception("[%s] Unexpected error on download %d", worker_id, download.id)
                self.store.fail_download(
                    download.id,
                    error="unexpected worker error",
                    fallback_path=None,
                )
                with self._summary_lock:
                    self._summary.errors += 1
                continue
            with self._summary_lock:
                self._summary.add(outcome)

    def _write_fallback(self, download: DownloadView, *, target: Path, last_error: str) -> Path:
        fallback = target.with_name(fallback_record_filename(download.target_filename))
        fallback.parent.mkdir(parents=True, exist_ok=True)
        current = self.store.get_download(download.id)
        lines = [
            f"job_index: {download.job_index}",
            f"tail_key: {download.tail_key}",
            f"take_index: {download.take_index}",
            f"target: {download.target_filename}",
            f"attempts: {current.attempts if current is not None else download.attempts}",
            f"last_error: {last_error}",
            f"url: {download.source_url}",
        ]
        tmp = fallback.with_name(f".{fallback.name}.tmp")
        tmp.write_text("\n".join(lines) + "\n", "utf-8")
        os.replace(tmp, fallback)
        return fallback


def _is_complete(path: Path, *, min_bytes: int) -> bool:
    try:
        return path.is_file() and path.stat().st_size >= min_bytes
    except OSError:
        return False
