from __future__ import annotations

from pathlib import Path

import allure
import pytest

from flow_batch.config import DEFAULT_ARTIFACT_URL_PATTERNS, Settings

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Configuration"),
]


def test_defaults_match_documented_pipeline_constants(monkeypatch) -> None:
    for name in (
        "FLOW_BATCH_INFLIGHT_CEILING",
        "FLOW_BATCH_SUBMIT_TICK_SECONDS",
        "FLOW_BATCH_DOWNLOAD_WORKERS",
        "FLOW_BATCH_ARTIFACT_URL_PATTERNS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env(db_path=Path("x.db"))

    assert settings.db_path == Path("x.db")
    assert settings.submission.inflight_ceiling == 5
    assert settings.submission.tick_seconds == 5.0
    assert settings.submission.ack_timeout_seconds == 120.0
    assert settings.submission.generation_timeout_seconds == 210.0
    assert settings.submission.late_ack_grace_seconds == 10.0
    assert settings.downloads.workers == 5
    assert settings.downloads.max_attempts == 3
    assert settings.harvest.artifact_url_patterns == DEFAULT_ARTIFACT_URL_PATTERNS
    settings.validate()


def test_environment_overrides_are_applied(monkeypatch) -> None:
    monkeypatch.setenv("FLOW_BATCH_INFLIGHT_CEILING", "2")
    monkeypatch.setenv("FLOW_BATCH_SUBMIT_TICK_SECONDS", "0.5")
    monkeypatch.setenv("FLOW_BATCH_OUTPUT_DIR", "/tmp/out")
    monkeypatch.setenv("FLOW_BATCH_ARTIFACT_URL_PATTERNS", " cdn.example.com, ,cdn.example.com,x ")
    monkeypatch.setenv("FLOW_BATCH_DEFAULT_MODEL_TAG", "veo3.1")

    settings = Settings.from_env()

    assert settings.submission.inflight_ceiling == 2
    assert settings.submission.tick_seconds == 0.5
    assert settings.downloads.output_dir == Path("/tmp/out")
    assert settings.harvest.artifact_url_patterns == ("cdn.example.com", "x")
    assert settings.artifacts.naming().default_model_tag == "veo3.1"


def test_invalid_integer_names_the_variable(monkeypatch) -> None:
    monkeypatch.setenv("FLOW_BATCH_DOWNLOAD_WORKERS", "many")

    with pytest.raises(ValueError, match="FLOW_BATCH_DOWNLOAD_WORKERS"):
        Settings.from_env()


def test_validate_rejects_non_positive_ceiling() -> None:
    settings = Settings()
    settings.submission.inflight_ceiling = 0

    with pytest.raises(ValueError, match="FLOW_BATCH_INFLIGHT_CEILING must be > 0"):
        settings.validate()


def test_validate_rejects_negative_timeouts_and_bad_extension() -> None:
    settings = Settings()
    settings.submission.ack_timeout_seconds = -1

    with pytest.raises(ValueError, match="FLOW_BATCH_SUBMIT_ACK_TIMEOUT_SECONDS"):
        settings.validate()

    settings = Settings()
    settings.artifacts.extension = "mp4"
    with pytest.raises(ValueError, match="must start with a dot"):
        settings.validate()


def test_validate_rejects_empty_url_patterns() -> None:
    settings = Settings()
    settings.harvest.artifact_url_patterns = ()

    with pytest.raises(ValueError, match="must not be empty"):
        settings.validate()
