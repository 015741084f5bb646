"""Attribute harvested result fragments back to the job that produced them."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from flow_batch.jobs.models import JobView
from flow_batch.jobs.naming import tail_50, tail_slug

logger = logging.getLogger(__name__)

PREFIX_CHARS = 30


class MatchTier(str, Enum):
    """Which rule attributed a fragment, in priority order."""

    TAIL_EXACT = "tail_exact"
    TAIL_KEY = "tail_key"
    PREFIX_OVERLAP = "prefix_overlap"


@dataclass(slots=True)
class MatchResult:
    """Matched job plus the rule and every candidate that rule accepted."""

    job: JobView
    tier: MatchTier
    candidates: list[int]


class Matcher:
    """Three-tier fuzzy matcher over a fixed set of jobs.

    Tiers are tried in order and the first job (lowest index) accepted by the
    first matching tier wins:

    1. the fragment's last 50 characters equal the job's last 50 characters;
    2. the fragment's normalized tail key equals the job's tail key;
    3. either text's first 30 characters occur inside the other text.

    Matches found by tiers 2 and 3 are logged with all candidates so that a
    misattribution between jobs sharing a tail or prefix can be audited.
    """

    def __init__(self, jobs: Iterable[JobView]) -> None:
        self._jobs = sorted(jobs, key=lambda job: job.index)

    def __len__(self) -> int:
        return len(self._jobs)

    def match(self, fragment: str) -> JobView | None:
        """Return the originating job for `fragment`, or `None`."""

        result = self.match_with_tier(fragment)
        return result.job if result is not None else None

    def match_with_tier(self, fragment: str) -> MatchResult | None:
        text = fragment.strip()
        if not text:
            return None

        fragment_tail = tail_50(text)
        candidates = [job for job in self._jobs if job.tail50 == fragment_tail]
        if candidates:
            return MatchResult(
                job=candidates[0],
                tier=MatchTier.TAIL_EXACT,
                candidates=[job.index for job in candidates],
            )

        fragment_key = tail_slug(text)
        if fragment_key:
            candidates = [job for job in self._jobs if job.tail_key == fragment_key]
            if candidates:
                return self._audited(MatchTier.TAIL_KEY, candidates, text)

        fragment_prefix = text[:PREFIX_CHARS]
        candidates = [
            job
            for job in self._jobs
            if fragment_prefix in job.text or (job.text and job.text[:PREFIX_CHARS] in text)
        ]
        if candidates:
            return self._audited(MatchTier.PREFIX_OVERLAP, candidates, text)
        return None

    def _audited(self, tier: MatchTier, candidates: list[JobView], text: str) -> MatchResult:
        indexes = [job.index for job in candidates]
        if len(candidates) > 1:
            logger.warning(
                "Ambiguous %s match for fragment %r: candidates=%s, picked job %d",
                tier.value,
                text[:60],
                indexes,
                candidates[0].index,
            )
        else:
            logger.info(
                "Matched fragment %r to job %d via %s",
                text[:60],
                candidates[0].index,
                tier.value,
            )
        return MatchResult(job=candidates[0], tier=tier, candidates=indexes)
