from __future__ import annotations

import os
from pathlib import Path

import allure
import httpx
import pytest

from flow_batch.http.fetcher import ArtifactFetcher, DownloadError
from flow_batch.jobs.models import DownloadCreate, DownloadState, DownloadView
from flow_batch.jobs.repository import JobStore
from flow_batch.orchestrator.downloads import DownloadOutcome, DownloadPool

pytestmark = [
    allure.epic("Downloads"),
    allure.feature("Download Pool"),
]

BODY = b"\x00\x01video-bytes" * 200
URL = "https://storage.googleapis.com/v/1.mp4"
TARGET = "2025-10-19_001_fox_veo3_01_8s.mp4"


class _Responder:
    """Replays scripted responses and records every request.

    A step is an exception to raise, a request handler, or a
    ``(status, body)`` pair. The last step repeats.
    """

    def __init__(self, *steps) -> None:
        self.steps = list(steps)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(request)
        status_code, body = step
        return httpx.Response(status_code, content=body)


def _fetcher(responder: _Responder) -> ArtifactFetcher:
    return ArtifactFetcher(transport=httpx.MockTransport(responder))


def _claimed(store: JobStore, *, url: str = URL, target: str = TARGET) -> DownloadView:
    store.ingest_jobs(["fox"])
    job = store.list_jobs()[0]
    store.enqueue_download(
        DownloadCreate(job_id=job.id, take_index=1, source_url=url, target_filename=target),
    )
    download = store.claim_next_download(worker_id="test")
    assert download is not None
    return download


def _pool(store: JobStore, fetcher: ArtifactFetcher, output_dir: Path, record_sleep, **overrides):
    options = {
        "workers": 2,
        "max_attempts": 3,
        "backoff_seconds": 1.0,
        "min_bytes": 1_000,
        "idle_poll_seconds": 0.05,
        "sleep": record_sleep,
    }
    options.update(overrides)
    return DownloadPool(store=store, fetcher=fetcher, output_dir=output_dir, **options)


def test_server_errors_are_retried_with_exponential_backoff(
    store,
    tmp_path: Path,
    record_sleep,
    sleeps,
) -> None:
    responder = _Responder(
        (500, b""),
        (503, b""),
        (200, BODY),
    )
    download = _claimed(store)
    pool = _pool(store, _fetcher(responder), tmp_path / "out", record_sleep)

    outcome = pool.process(download)

    assert outcome == DownloadOutcome.DONE
    assert sleeps == [1.0, 2.0]
    assert (tmp_path / "out" / TARGET).read_bytes() == BODY
    stored = store.get_download(download.id)
    assert stored is not None
    assert stored.state == DownloadState.DONE
    assert stored.attempts == 3
    assert stored.local_path == str(tmp_path / "out" / TARGET)
    assert list((tmp_path / "out").glob(".*part*")) == []


def test_exhausted_attempts_write_url_fallback(store, tmp_path: Path, record_sleep) -> None:
    responder = _Responder((404, b""))
    download = _claimed(store)
    pool = _pool(store, _fetcher(responder), tmp_path, record_sleep)

    outcome = pool.process(download)

    assert outcome == DownloadOutcome.FAILED
    assert len(responder.requests) == 3
    assert not (tmp_path / TARGET).exists()
    fallback = tmp_path / "2025-10-19_001_fox_veo3_01_8s_url.txt"
    content = fallback.read_text("utf-8")
    assert f"url: {URL}" in content
    assert "attempts: 3" in content
    assert "last_error: HTTP 404" in content
    stored = store.get_download(download.id)
    assert stored is not None
    assert stored.state == DownloadState.FAILED
    assert stored.fallback_path == str(fallback)
    assert stored.last_error == "HTTP 404"


def test_existing_complete_file_is_skipped_without_fetching(
    store,
    tmp_path: Path,
    record_sleep,
) -> None:
    (tmp_path / TARGET).write_bytes(BODY)
    responder = _Responder((200, b"new"))
    download = _claimed(store)
    pool = _pool(store, _fetcher(responder), tmp_path, record_sleep)

    outcome = pool.process(download)

    assert outcome == DownloadOutcome.SKIPPED
    assert responder.requests == []
    assert (tmp_path / TARGET).read_bytes() == BODY
    stored = store.get_download(download.id)
    assert stored is not None and stored.state == DownloadState.DONE


def test_truncated_existing_file_is_fetched_again(store, tmp_path: Path, record_sleep) -> None:
    (tmp_path / TARGET).write_bytes(b"partial")
    responder = _Responder((200, BODY))
    download = _claimed(store)
    pool = _pool(store, _fetcher(responder), tmp_path, record_sleep)

    assert pool.process(download) == DownloadOutcome.DONE
    assert (tmp_path / TARGET).read_bytes() == BODY


def test_redirects_are_followed(store, tmp_path: Path, record_sleep) -> None:
    def _route(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v/1.mp4":
            return httpx.Response(302, headers={"Location": "https://cdn.example.com/final.mp4"})
        return httpx.Response(200, content=BODY)

    responder = _Responder(_route)
    download = _claimed(store)
    pool = _pool(store, _fetcher(responder), tmp_path, record_sleep)

    assert pool.process(download) == DownloadOutcome.DONE
    assert [str(request.url) for request in responder.requests] == [
        URL,
        "https://cdn.example.com/final.mp4",
    ]
    stored = store.get_download(download.id)
    assert stored is not None and stored.attempts == 1


def test_transport_errors_become_download_errors(tmp_path: Path) -> None:
    responder = _Responder(httpx.ConnectError("connection refused"))

    with _fetcher(responder) as fetcher, pytest.raises(DownloadError, match="connection refused"):
        fetcher.fetch_to(URL, tmp_path / "x.mp4")
    assert list(tmp_path.iterdir()) == []


def test_pool_workers_drain_the_queue(store, tmp_path: Path, record_sleep) -> None:
    store.ingest_jobs(["a", "b", "c"])
    for job in store.list_jobs():
        store.enqueue_download(
            DownloadCreate(
                job_id=job.id,
                take_index=1,
                source_url=f"https://cdn.example.com/{job.index}.mp4",
                target_filename=f"{job.index}.mp4",
            ),
        )
    responder = _Responder((200, BODY))
    pool = _pool(store, _fetcher(responder), tmp_path, record_sleep, workers=2)

    summary = pool.run_until_drained()

    assert (summary.done, summary.failed, summary.errors) == (3, 0, 0)
    assert sorted(path.name for path in tmp_path.glob("*.mp4")) == ["1.mp4", "2.mp4", "3.mp4"]
    assert store.stats().pending_downloads == 0


def _fail_partial_renames(monkeypatch: pytest.MonkeyPatch) -> None:
    real_replace = os.replace

    def _replace(src, dst) -> None:
        if ".part-" in str(src):
            raise OSError(28, "No space left on device")
        real_replace(src, dst)

    monkeypatch.setattr(os, "replace", _replace)


def test_local_write_error_becomes_download_error(tmp_path: Path, monkeypatch) -> None:
    _fail_partial_renames(monkeypatch)
    responder = _Responder((200, BODY))

    with _fetcher(responder) as fetcher, pytest.raises(DownloadError, match="No space left"):
        fetcher.fetch_to(URL, tmp_path / "x.mp4")
    assert list(tmp_path.iterdir()) == []


def test_local_write_errors_exhaust_attempts_and_keep_url_record(
    store,
    tmp_path: Path,
    record_sleep,
    monkeypatch,
) -> None:
    _fail_partial_renames(monkeypatch)
    responder = _Responder((200, BODY))
    output_dir = tmp_path / "videos"
    download = _claimed(store)
    pool = _pool(store, _fetcher(responder), output_dir, record_sleep)

    outcome = pool.process(download)

    assert outcome == DownloadOutcome.FAILED
    assert len(responder.requests) == 3
    fallback = output_dir / "2025-10-19_001_fox_veo3_01_8s_url.txt"
    assert f"url: {URL}" in fallback.read_text("utf-8")
    assert sorted(path.name for path in output_dir.iterdir()) == [fallback.name]
    stored = store.get_download(download.id)
    assert stored is not None
    assert stored.attempts == 3
    assert stored.fallback_path == str(fallback)


def test_unusable_output_dir_fails_download_without_url_record(
    store,
    tmp_path: Path,
    record_sleep,
) -> None:
    blocked = tmp_path / "videos"
    blocked.write_text("not a directory", "utf-8")
    responder = _Responder((200, BODY))
    download = _claimed(store)
    pool = _pool(store, _fetcher(responder), blocked, record_sleep)

    outcome = pool.process(download)

    assert outcome == DownloadOutcome.FAILED
    assert responder.requests == []
    stored = store.get_download(download.id)
    assert stored is not None
    assert stored.state == DownloadState.FAILED
    assert stored.attempts == 3
    assert stored.fallback_path is None
    assert stored.last_error is not None and stored.last_error.startswith("write failed")
