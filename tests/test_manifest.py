from __future__ import annotations

import json
from pathlib import Path

import allure

from flow_batch.jobs.models import DownloadCreate
from flow_batch.jobs.repository import JobStore
from flow_batch.orchestrator.manifest import build_manifest, export_manifest

pytestmark = [
    allure.epic("Artifacts"),
    allure.feature("Run Manifest"),
]


def _enqueue(store: JobStore, job_id: int, take: int, filename: str) -> int:
    download = store.enqueue_download(
        DownloadCreate(
            job_id=job_id,
            take_index=take,
            source_url=f"https://cdn.example.com/{filename}",
            target_filename=filename,
        ),
    )
    assert download is not None
    return download.id


def test_manifest_counts_only_completed_artifacts(store: JobStore) -> None:
    store.ingest_jobs(["first", "second", "third"])
    first, second, _ = store.list_jobs()
    _enqueue(store, first.id, 1, "a_01.mp4")
    _enqueue(store, first.id, 2, "a_02.mp4")
    _enqueue(store, second.id, 1, "b_01.mp4")
    for _ in range(2):
        claimed = store.claim_next_download(worker_id="w")
        assert claimed is not None
        store.complete_download(claimed.id, local_path=f"/out/{claimed.target_filename}")
    failed = store.claim_next_download(worker_id="w")
    assert failed is not None
    store.fail_download(failed.id, error="HTTP 404", fallback_path="/out/b_01_url.txt")

    payload = build_manifest(store)

    assert payload["totalJobs"] == 3
    assert payload["totalArtifacts"] == 2
    assert payload["jobsWithArtifacts"] == 1
    assert [job["artifacts"] for job in payload["jobs"]] == [["a_01.mp4", "a_02.mp4"], [], []]
    assert [d["state"] for d in payload["downloads"]] == ["done", "done", "failed"]
    assert payload["downloads"][2]["fallbackPath"] == "/out/b_01_url.txt"


def test_export_writes_readable_json_atomically(store: JobStore, tmp_path: Path) -> None:
    store.ingest_jobs(["Café prompt"])
    target = tmp_path / "reports" / "manifest.json"

    payload = export_manifest(store, target)

    assert json.loads(target.read_text("utf-8")) == payload
    assert payload["jobs"][0]["tailKey"] == "cafe-prompt"
    assert list(target.parent.iterdir()) == [target]
