"""CLI entrypoint for flow-batch."""

import logging
from pathlib import Path

import rich_click as click

from flow_batch import __version__
from flow_batch.controllers import (
    DownloadsCliController,
    DownloadsListCommand,
    DownloadsRunCommand,
    JobsCliController,
    JobsIngestCommand,
    JobsInspectCommand,
    JobsListCommand,
    JobsStatsCommand,
    ManifestCliController,
    ManifestExportCommand,
)
from flow_batch.jobs.models import DownloadState, JobStatus

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()
DOWNLOADS_CONTROLLER = DownloadsCliController()
MANIFEST_CONTROLLER = ManifestCliController()

_JOB_STATUSES = [status.value for status in JobStatus]
_DOWNLOAD_STATES = [state.value for state in DownloadState]


@click.group()
@click.version_option(version=__version__, prog_name="flow-batch")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Enable logging at this level.",
)
def flow_batch(log_level: str | None) -> None:
    """Bulk generation job orchestrator CLI."""

    if log_level is not None:
        logging.basicConfig(
            level=log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@flow_batch.group()
def jobs() -> None:
    """Job store commands."""


@jobs.command("ingest")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--prompts-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="Text file with one prompt per line.",
)
def jobs_ingest(db_path: Path | None, prompts_file: Path) -> None:
    """Create jobs from a prompts file; already ingested positions are skipped."""

    _emit_lines(
        JOBS_CONTROLLER.ingest(JobsIngestCommand(db_path=db_path, prompts_file=prompts_file)),
    )


@jobs.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def jobs_stats(db_path: Path | None) -> None:
    """Show job and download counts by status."""

    _emit_lines(JOBS_CONTROLLER.stats(JobsStatsCommand(db_path=db_path)))


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(_JOB_STATUSES, case_sensitive=False),
    default=None,
    help="Only list jobs in this status.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=10_000),
    default=100,
    show_default=True,
    help="Max number of jobs to print.",
)
def jobs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List jobs in input order."""

    _emit_lines(
        JOBS_CONTROLLER.list_jobs(JobsListCommand(db_path=db_path, status=status, limit=limit)),
    )


@jobs.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--index", type=click.IntRange(min=1), required=True, help="Job index (1-based).")
def jobs_inspect(db_path: Path | None, index: int) -> None:
    """Show one job with its operations, downloads and events."""

    _emit_lines(JOBS_CONTROLLER.inspect(JobsInspectCommand(db_path=db_path, index=index)))


@jobs.command("retry")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--index", type=click.IntRange(min=1), required=True, help="Job index (1-based).")
def jobs_retry(db_path: Path | None, index: int) -> None:
    """Re-queue a failed job, keeping its successful takes."""

    try:
        lines = JOBS_CONTROLLER.retry(JobsInspectCommand(db_path=db_path, index=index))
    except RuntimeError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@flow_batch.group()
def downloads() -> None:
    """Download queue commands."""


@downloads.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--state",
    type=click.Choice(_DOWNLOAD_STATES, case_sensitive=False),
    default=None,
    help="Only list downloads in this state.",
)
def downloads_list(db_path: Path | None, state: str | None) -> None:
    """List download tasks."""

    _emit_lines(
        DOWNLOADS_CONTROLLER.list_downloads(DownloadsListCommand(db_path=db_path, state=state)),
    )


@downloads.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--output-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory for downloaded artifacts.",
)
@click.option(
    "--workers",
    type=click.IntRange(min=1, max=32),
    default=None,
    help="Number of parallel download workers.",
)
def downloads_run(db_path: Path | None, output_dir: Path | None, workers: int | None) -> None:
    """Drain the download queue once and exit."""

    _emit_lines(
        DOWNLOADS_CONTROLLER.run(
            DownloadsRunCommand(db_path=db_path, output_dir=output_dir, workers=workers),
        ),
    )


@flow_batch.group()
def manifest() -> None:
    """Run manifest commands."""


@manifest.command("export")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Manifest path (defaults to FLOW_BATCH_MANIFEST_PATH).",
)
def manifest_export(db_path: Path | None, output_path: Path | None) -> None:
    """Write the JSON manifest of jobs and artifacts."""

    _emit_lines(
        MANIFEST_CONTROLLER.export(ManifestExportCommand(db_path=db_path, output_path=output_path)),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    flow_batch()
