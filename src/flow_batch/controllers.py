"""Controllers for job, download and manifest CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from flow_batch.config import Settings
from flow_batch.http.fetcher import ArtifactFetcher
from flow_batch.jobs.models import DownloadState, JobStatus
from flow_batch.jobs.repository import JobStore
from flow_batch.orchestrator.downloads import DownloadPool
from flow_batch.orchestrator.manifest import export_manifest


@dataclass(slots=True)
class JobsIngestCommand:
    """CLI input for loading prompts into the job store."""

    db_path: Path | None
    prompts_file: Path


@dataclass(slots=True)
class JobsStatsCommand:
    db_path: Path | None


@dataclass(slots=True)
class JobsListCommand:
    """CLI input for job listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobsInspectCommand:
    """CLI input for job inspection and operator retry."""

    db_path: Path | None
    index: int


@dataclass(slots=True)
class DownloadsListCommand:
    db_path: Path | None
    state: str | None


@dataclass(slots=True)
class DownloadsRunCommand:
    """CLI input for draining queued downloads."""

    db_path: Path | None
    output_dir: Path | None
    workers: int | None


@dataclass(slots=True)
class ManifestExportCommand:
    db_path: Path | None
    output_path: Path | None


class JobsCliController:
    """Coordinates ingestion, inspection and operator commands."""

    def ingest(self, command: JobsIngestCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        prompts = read_prompts(command.prompts_file)
        with _store(settings) as store:
            result = store.ingest_jobs(prompts)
            stats = store.stats()
        return [
            f"Prompts read: {len(prompts)}",
            f"Jobs inserted: {result.inserted} skipped: {result.skipped}",
            f"Jobs total: {stats.total} queued: {stats.queued}",
        ]

    def stats(self, command: JobsStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            stats = store.stats()
        return [
            f"Jobs: {stats.total}",
            f"  queued={stats.queued} submitting={stats.submitting} "
            f"in_progress={stats.in_progress} done={stats.done} failed={stats.failed}",
            "Downloads: "
            f"queued={stats.downloads_queued} running={stats.downloads_running} "
            f"done={stats.downloads_done} failed={stats.downloads_failed}",
        ]

    def list_jobs(self, command: JobsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_job_status(command.status)
        with _store(settings) as store:
            jobs = store.list_jobs(status=status_filter, limit=command.limit)

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  #{job.index:03d} status={job.status.value} tail={job.tail_key} "
                f"retries={job.retry_count} error={job.error or '-'}",
            )
        return lines

    def inspect(self, command: JobsInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            details = store.get_job_details(index=command.index)
        if details is None:
            return [f"Job not found: index={command.index}"]

        job = details.job
        lines = [
            f"Job: #{job.index}",
            f"Status: {job.status.value}",
            f"Tail key: {job.tail_key}",
            f"Submitted: {job.submitted_at.isoformat() if job.submitted_at else '-'}",
            f"Error: {job.error or '-'}",
            f"Text: {job.text}",
            f"Operations: {len(details.operations)}",
        ]
        for operation in details.operations:
            lines.append(
                f"  take={operation.take_index} op={operation.op_name} "
                f"state={operation.state or '-'} url={operation.artifact_url or '-'}",
            )
        lines.append(f"Downloads: {len(details.downloads)}")
        for download in details.downloads:
            lines.append(
                f"  {download.target_filename} state={download.state.value} "
                f"attempts={download.attempts}",
            )
        lines.append(f"Events: {len(details.events)}")
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def retry(self, command: JobsInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            job = store.retry_job(index=command.index)
        return [f"Job re-queued: #{job.index} (retry {job.retry_count})"]


class DownloadsCliController:
    """Download queue inspection and draining."""

    def list_downloads(self, command: DownloadsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        state_filter = _parse_download_state(command.state)
        with _store(settings) as store:
            downloads = store.list_downloads(state=state_filter)

        lines = [f"Downloads: {len(downloads)}"]
        for download in downloads:
            lines.append(
                f"  {download.target_filename} state={download.state.value} "
                f"attempts={download.attempts} error={download.last_error or '-'}",
            )
        return lines

    def run(self, command: DownloadsRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.output_dir is not None:
            settings.downloads.output_dir = command.output_dir
        if command.workers is not None:
            settings.downloads.workers = command.workers
        settings.validate()

        with _store(settings) as store:
            store.recover_interrupted()
            with ArtifactFetcher(timeout_seconds=settings.downloads.timeout_seconds) as fetcher:
                summary = DownloadPool(
                    store=store,
                    fetcher=fetcher,
                    output_dir=settings.downloads.output_dir,
                    workers=settings.downloads.workers,
                    max_attempts=settings.downloads.max_attempts,
                    backoff_seconds=settings.downloads.backoff_seconds,
                    min_bytes=settings.downloads.min_bytes,
                    idle_poll_seconds=settings.downloads.idle_poll_seconds,
                ).run_until_drained()
        return [
            "Download summary: "
            f"done={summary.done} skipped={summary.skipped} "
            f"failed={summary.failed} errors={summary.errors}",
            f"Output: {settings.downloads.output_dir}",
        ]


class ManifestCliController:
    def export(self, command: ManifestExportCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        path = command.output_path or settings.artifacts.manifest_path
        with _store(settings) as store:
            payload = export_manifest(store, path)
        return [
            f"Manifest written: {path}",
            f"Jobs: {payload['totalJobs']} artifacts: {payload['totalArtifacts']} "
            f"jobs with artifacts: {payload['jobsWithArtifacts']}",
        ]


def read_prompts(path: Path) -> list[str]:
    """One prompt per non-empty line, in file order."""

    return [line.strip() for line in path.read_text("utf-8").splitlines() if line.strip()]


def _parse_job_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    return JobStatus(value.strip().lower())


def _parse_download_state(value: str | None) -> DownloadState | None:
    if value is None:
        return None
    return DownloadState(value.strip().lower())


@contextmanager
def _store(settings: Settings) -> Iterator[JobStore]:
    store = JobStore(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    store.init_schema()
    try:
        yield store
    finally:
        store.close()
