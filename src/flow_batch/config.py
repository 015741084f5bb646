"""Runtime configuration for submission, harvest and download stages."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from flow_batch.jobs.naming import (
    DEFAULT_DURATION_SECONDS,
    DEFAULT_EXTENSION,
    DEFAULT_MODEL_TAG,
    ArtifactNaming,
)

DEFAULT_ARTIFACT_URL_PATTERNS: tuple[str, ...] = (
    "storage.googleapis.com",
    "googleusercontent.com",
    "ai-sandbox-videofx",
)


@dataclass(slots=True)
class SubmissionSettings:
    """Submission controller settings."""

    tick_seconds: float = 5.0
    inflight_ceiling: int = 5
    max_attempts: int = 3
    retry_backoff_seconds: float = 1.0
    ack_timeout_seconds: float = 120.0
    generation_timeout_seconds: float = 210.0
    late_ack_grace_seconds: float = 10.0


@dataclass(slots=True)
class HarvestSettings:
    """Result-list harvest settings."""

    settle_seconds: float = 30.0
    scroll_end_attempts: int = 20
    scroll_step: int = 400
    idle_steps: int = 5
    scroll_pause_seconds: float = 0.2
    artifact_url_patterns: tuple[str, ...] = DEFAULT_ARTIFACT_URL_PATTERNS


@dataclass(slots=True)
class DownloadSettings:
    """Download pool settings."""

    output_dir: Path = Path("dist/videos")
    workers: int = 5
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    timeout_seconds: float = 60.0
    min_bytes: int = 1_000
    idle_poll_seconds: float = 1.0


@dataclass(slots=True)
class ArtifactSettings:
    """Artifact naming and manifest settings."""

    default_model_tag: str = DEFAULT_MODEL_TAG
    default_duration_seconds: int = DEFAULT_DURATION_SECONDS
    extension: str = DEFAULT_EXTENSION
    manifest_path: Path = Path("dist/manifest.json")

    def naming(self) -> ArtifactNaming:
        return ArtifactNaming(
            default_model_tag=self.default_model_tag,
            default_duration_seconds=self.default_duration_seconds,
            extension=self.extension,
        )


@dataclass(slots=True)
class Settings:
    """Application settings grouped by pipeline stage."""

    db_path: Path = Path(".flow_batch.db")
    sqlite_busy_timeout_ms: int = 5_000
    submission: SubmissionSettings = field(default_factory=SubmissionSettings)
    harvest: HarvestSettings = field(default_factory=HarvestSettings)
    downloads: DownloadSettings = field(default_factory=DownloadSettings)
    artifacts: ArtifactSettings = field(default_factory=ArtifactSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local runs."""

        return cls(
            db_path=db_path or Path(os.getenv("FLOW_BATCH_DB_PATH", ".flow_batch.db")),
            sqlite_busy_timeout_ms=_env_int("FLOW_BATCH_SQLITE_BUSY_TIMEOUT_MS", 5_000),
            submission=SubmissionSettings(
                tick_seconds=_env_float("FLOW_BATCH_SUBMIT_TICK_SECONDS", 5.0),
                inflight_ceiling=_env_int("FLOW_BATCH_INFLIGHT_CEILING", 5),
                max_attempts=_env_int("FLOW_BATCH_SUBMIT_MAX_ATTEMPTS", 3),
                retry_backoff_seconds=_env_float("FLOW_BATCH_SUBMIT_RETRY_BACKOFF_SECONDS", 1.0),
                ack_timeout_seconds=_env_float("FLOW_BATCH_SUBMIT_ACK_TIMEOUT_SECONDS", 120.0),
                generation_timeout_seconds=_env_float(
                    "FLOW_BATCH_GENERATION_TIMEOUT_SECONDS",
                    210.0,
                ),
                late_ack_grace_seconds=_env_float("FLOW_BATCH_LATE_ACK_GRACE_SECONDS", 10.0),
            ),
            harvest=HarvestSettings(
                settle_seconds=_env_float("FLOW_BATCH_HARVEST_SETTLE_SECONDS", 30.0),
                scroll_end_attempts=_env_int("FLOW_BATCH_HARVEST_SCROLL_END_ATTEMPTS", 20),
                scroll_step=_env_int("FLOW_BATCH_HARVEST_SCROLL_STEP", 400),
                idle_steps=_env_int("FLOW_BATCH_HARVEST_IDLE_STEPS", 5),
                scroll_pause_seconds=_env_float("FLOW_BATCH_HARVEST_SCROLL_PAUSE_SECONDS", 0.2),
                artifact_url_patterns=_env_csv(
                    "FLOW_BATCH_ARTIFACT_URL_PATTERNS",
                    DEFAULT_ARTIFACT_URL_PATTERNS,
                ),
            ),
            downloads=DownloadSettings(
                output_dir=Path(os.getenv("FLOW_BATCH_OUTPUT_DIR", "dist/videos")),
                workers=_env_int("FLOW_BATCH_DOWNLOAD_WORKERS", 5),
                max_attempts=_env_int("FLOW_BATCH_DOWNLOAD_MAX_ATTEMPTS", 3),
                backoff_seconds=_env_float("FLOW_BATCH_DOWNLOAD_BACKOFF_SECONDS", 1.0),
                timeout_seconds=_env_float("FLOW_BATCH_DOWNLOAD_TIMEOUT_SECONDS", 60.0),
                min_bytes=_env_int("FLOW_BATCH_DOWNLOAD_MIN_BYTES", 1_000),
                idle_poll_seconds=_env_float("FLOW_BATCH_DOWNLOAD_IDLE_POLL_SECONDS", 1.0),
            ),
            artifacts=ArtifactSettings(
                default_model_tag=os.getenv("FLOW_BATCH_DEFAULT_MODEL_TAG", DEFAULT_MODEL_TAG),
                default_duration_seconds=_env_int(
                    "FLOW_BATCH_DEFAULT_DURATION_SECONDS",
                    DEFAULT_DURATION_SECONDS,
                ),
                extension=os.getenv("FLOW_BATCH_ARTIFACT_EXTENSION", DEFAULT_EXTENSION),
                manifest_path=Path(os.getenv("FLOW_BATCH_MANIFEST_PATH", "dist/manifest.json")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the pipeline cannot run with."""

        positive_ints = {
            "FLOW_BATCH_INFLIGHT_CEILING": self.submission.inflight_ceiling,
            "FLOW_BATCH_SUBMIT_MAX_ATTEMPTS": self.submission.max_attempts,
            "FLOW_BATCH_DOWNLOAD_WORKERS": self.downloads.workers,
            "FLOW_BATCH_DOWNLOAD_MAX_ATTEMPTS": self.downloads.max_attempts,
            "FLOW_BATCH_HARVEST_SCROLL_END_ATTEMPTS": self.harvest.scroll_end_attempts,
            "FLOW_BATCH_HARVEST_SCROLL_STEP": self.harvest.scroll_step,
            "FLOW_BATCH_HARVEST_IDLE_STEPS": self.harvest.idle_steps,
            "FLOW_BATCH_DEFAULT_DURATION_SECONDS": self.artifacts.default_duration_seconds,
        }
        for name, value in positive_ints.items():
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        if self.submission.tick_seconds <= 0:
            raise ValueError("FLOW_BATCH_SUBMIT_TICK_SECONDS must be > 0.")
        if self.downloads.timeout_seconds <= 0:
            raise ValueError("FLOW_BATCH_DOWNLOAD_TIMEOUT_SECONDS must be > 0.")

        non_negative = {
            "FLOW_BATCH_SUBMIT_RETRY_BACKOFF_SECONDS": self.submission.retry_backoff_seconds,
            "FLOW_BATCH_SUBMIT_ACK_TIMEOUT_SECONDS": self.submission.ack_timeout_seconds,
            "FLOW_BATCH_GENERATION_TIMEOUT_SECONDS": self.submission.generation_timeout_seconds,
            "FLOW_BATCH_LATE_ACK_GRACE_SECONDS": self.submission.late_ack_grace_seconds,
            "FLOW_BATCH_HARVEST_SETTLE_SECONDS": self.harvest.settle_seconds,
            "FLOW_BATCH_HARVEST_SCROLL_PAUSE_SECONDS": self.harvest.scroll_pause_seconds,
            "FLOW_BATCH_DOWNLOAD_BACKOFF_SECONDS": self.downloads.backoff_seconds,
            "FLOW_BATCH_DOWNLOAD_MIN_BYTES": self.downloads.min_bytes,
            "FLOW_BATCH_DOWNLOAD_IDLE_POLL_SECONDS": self.downloads.idle_poll_seconds,
        }
        for name, value in non_negative.items():
            if value < 0:
                raise ValueError(f"{name} must be >= 0.")

        if not self.artifacts.extension.startswith("."):
            raise ValueError(
                "FLOW_BATCH_ARTIFACT_EXTENSION must start with a dot, "
                f"got {self.artifacts.extension!r}.",
            )
        if not self.harvest.artifact_url_patterns:
            raise ValueError("FLOW_BATCH_ARTIFACT_URL_PATTERNS must not be empty.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error


def _env_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values: list[str] = []
    for part in raw.split(","):
        token = part.strip()
        if token and token not in values:
            values.append(token)
    return tuple(values)
