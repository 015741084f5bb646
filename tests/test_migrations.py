from pathlib import Path

import allure
from sqlalchemy import text

from flow_batch.jobs.repository import JobStore

pytestmark = [
    allure.epic("Job Store"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "migrations.db")
    try:
        store.init_schema()
        with store.engine.connect() as connection:
            version = connection.execute(
                text("SELECT version_num FROM alembic_version LIMIT 1"),
            ).scalar_one()
            tables = connection.execute(
                text(
                    "SELECT name FROM sqlite_master WHERE type = 'table' "
                    "AND name IN ('jobs', 'operations', 'downloads', 'job_events') "
                    "ORDER BY name",
                ),
            ).scalars().all()
    finally:
        store.close()

    assert version == "20261019_0002"
    assert tables == ["downloads", "job_events", "jobs", "operations"]


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "migrations.db")
    try:
        store.init_schema()
        store.ingest_jobs(["keep me"])
        store.init_schema()
        assert [job.text for job in store.list_jobs()] == ["keep me"]
    finally:
        store.close()
