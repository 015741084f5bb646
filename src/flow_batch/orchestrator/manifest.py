"""Run manifest: which jobs produced which artifacts."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from flow_batch.jobs.models import DownloadState
from flow_batch.jobs.repository import JobStore
from flow_batch.storage.common import utc_now


def build_manifest(store: JobStore) -> dict[str, Any]:
    """Collect the manifest payload from current store state."""

    jobs = store.list_jobs()
    downloads = store.list_downloads()
    done = [download for download in downloads if download.state == DownloadState.DONE]
    artifacts_by_job: dict[int, list[str]] = {}
    for download in done:
        artifacts_by_job.setdefault(download.job_index, []).append(download.target_filename)

    return {
        "generatedAt": utc_now().isoformat(),
        "totalJobs": len(jobs),
        "totalArtifacts": len(done),
        "jobsWithArtifacts": len(artifacts_by_job),
        "downloads": [
            {
                "jobIndex": download.job_index,
                "takeIndex": download.take_index,
                "filename": download.target_filename,
                "sourceUrl": download.source_url,
                "state": download.state.value,
                "localPath": download.local_path,
                "fallbackPath": download.fallback_path,
            }
            for download in downloads
        ],
        "jobs": [
            {
                "index": job.index,
                "status": job.status.value,
                "tailKey": job.tail_key,
                "error": job.error,
                "artifacts": artifacts_by_job.get(job.index, []),
            }
            for job in jobs
        ],
    }


def write_manifest(path: Path, payload: dict[str, Any]) -> Path:
    """Persist the manifest atomically with deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
    os.replace(tmp, path)
    return path


def export_manifest(store: JobStore, path: Path) -> dict[str, Any]:
    payload = build_manifest(store)
    write_manifest(path, payload)
    return payload
