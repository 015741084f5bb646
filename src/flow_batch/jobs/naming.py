"""Tail fingerprints and deterministic artifact filenames.

The filename layout is consumed by downstream tooling and must stay
byte-for-byte stable:

    <YYYY-MM-DD>_<index:03d>_<tail-slug>_<model-tag>_<take:02d>_<duration>s<ext>
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import PurePath

TAIL_CHARS = 50
DEFAULT_MODEL_TAG = "veo3"
DEFAULT_DURATION_SECONDS = 8
DEFAULT_EXTENSION = ".mp4"
FALLBACK_SUFFIX = "_url.txt"

_COMBINING_MARKS = re.compile("[\u0300-\u036f]")
_NON_SLUG_CHARS = re.compile(r"[^A-Za-z0-9_\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASH_RUNS = re.compile(r"-+")


def tail_50(text: str) -> str:
    """Last fifty characters of a text, unchanged."""

    return text[-TAIL_CHARS:]


def tail_slug(text: str) -> str:
    """Normalized fingerprint of the last fifty characters of `text`.

    Diacritics are stripped, the result is lowercased, anything outside
    ``[A-Za-z0-9_]``, whitespace and ``-`` is dropped, and whitespace runs
    collapse into single hyphens.
    """

    decomposed = unicodedata.normalize("NFD", tail_50(text))
    slug = _COMBINING_MARKS.sub("", decomposed).lower()
    slug = _NON_SLUG_CHARS.sub("", slug)
    slug = _WHITESPACE.sub("-", slug)
    slug = _DASH_RUNS.sub("-", slug)
    return slug.strip("-")


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def model_tag(model: str | None, *, default: str = DEFAULT_MODEL_TAG) -> str:
    """Map the service model identifier to the short tag used in filenames."""

    if not model:
        return default
    if "veo_3_1" in model:
        if "fast" in model:
            return "veo3.1-fast"
        return "veo3.1"
    return "veo3"


def build_artifact_filename(  # noqa: PLR0913
    *,
    run_date: date,
    job_index: int,
    tail_key: str,
    tag: str,
    take_index: int,
    duration_seconds: int | None,
    extension: str = DEFAULT_EXTENSION,
) -> str:
    """Build the deterministic artifact filename."""

    duration = duration_seconds or DEFAULT_DURATION_SECONDS
    return (
        f"{run_date.isoformat()}_{job_index:03d}_{tail_key}_{tag}_"
        f"{take_index:02d}_{duration}s{extension}"
    )


def fallback_record_filename(target_filename: str) -> str:
    """Name of the plain-text record written beside a target that never arrived."""

    return f"{PurePath(target_filename).stem}{FALLBACK_SUFFIX}"


def _utc_today() -> date:
    return datetime.now(tz=UTC).date()


@dataclass(slots=True)
class ArtifactNaming:
    """Filename policy shared by every component that enqueues downloads."""

    default_model_tag: str = DEFAULT_MODEL_TAG
    default_duration_seconds: int = DEFAULT_DURATION_SECONDS
    extension: str = DEFAULT_EXTENSION
    today: Callable[[], date] = field(default=_utc_today)

    def filename_for(
        self,
        *,
        job_index: int,
        tail_key: str,
        take_index: int,
        model: str | None = None,
        duration_seconds: int | None = None,
    ) -> str:
        return build_artifact_filename(
            run_date=self.today(),
            job_index=job_index,
            tail_key=tail_key,
            tag=model_tag(model, default=self.default_model_tag),
            take_index=take_index,
            duration_seconds=duration_seconds or self.default_duration_seconds,
            extension=self.extension,
        )
