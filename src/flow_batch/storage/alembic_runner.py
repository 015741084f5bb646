"""Apply the bundled Alembic migrations to a job store database."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

# src/flow_batch/storage/ -> repository root holding alembic.ini and alembic/
_PROJECT_ROOT = Path(__file__).resolve().parents[3]


def _alembic_config(db_path: Path) -> Config:
    config = Config(str(_PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(_PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Bring `db_path` to the latest schema revision; a no-op when current."""

    db_path.parent.mkdir(parents=True, exist_ok=True)
    command.upgrade(_alembic_config(db_path), "head")
