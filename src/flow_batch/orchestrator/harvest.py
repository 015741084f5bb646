"""Harvest controller: one backward scan of the virtualized result list."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from flow_batch.jobs.matcher import Matcher
from flow_batch.jobs.models import DownloadCreate
from flow_batch.jobs.naming import ArtifactNaming
from flow_batch.jobs.repository import JobStore
from flow_batch.orchestrator.contracts import Actuator, ActuatorError, VisibleItem

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HarvestSummary:
    """Counters of one harvest pass."""

    items_seen: int = 0
    items_matched: int = 0
    items_unmatched: int = 0
    items_without_artifacts: int = 0
    item_errors: int = 0
    downloads_created: int = 0
    downloads_existing: int = 0
    scroll_steps: int = 0


class HarvestController:
    """Scrolls the results surface to its end, then walks it toward the start.

    Each item is processed once, keyed by its `item_index`. Scanning stops
    after `idle_steps` consecutive scroll steps reveal no new item, or when
    the surface can no longer scroll up.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStore,
        actuator: Actuator,
        naming: ArtifactNaming | None = None,
        artifact_url_patterns: tuple[str, ...] = (),
        scroll_end_attempts: int = 20,
        scroll_step: int = 400,
        idle_steps: int = 5,
        scroll_pause_seconds: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.actuator = actuator
        self.naming = naming or ArtifactNaming()
        self.artifact_url_patterns = artifact_url_patterns
        self.scroll_end_attempts = scroll_end_attempts
        self.scroll_step = scroll_step
        self.idle_steps = idle_steps
        self.scroll_pause_seconds = scroll_pause_seconds
        self._sleep = sleep

    def run(self) -> HarvestSummary:
        summary = HarvestSummary()
        matcher = Matcher(self.store.list_jobs())
        position = self._scroll_to_end()

        seen: set[int] = set()
        idle = 0
        at_top = False
        while True:
            new_items = self._scan_visible(matcher=matcher, seen=seen, summary=summary)
            idle = 0 if new_items else idle + 1
            if idle >= self.idle_steps or at_top:
                break

            try:
                new_position = self.actuator.scroll_step(-self.scroll_step)
            except ActuatorError as error:
                logger.warning("Scroll step failed, ending harvest: %s", error)
                break
            summary.scroll_steps += 1
            at_top = new_position <= 0 or new_position >= position
            position = new_position
            self._sleep(self.scroll_pause_seconds)

        logger.info(
            "Harvest finished: %d items, %d matched, %d unmatched, %d new downloads",
            summary.items_seen,
            summary.items_matched,
            summary.items_unmatched,
            summary.downloads_created,
        )
        return summary

    def _scroll_to_end(self) -> int:
        """Scroll down until the position stabilizes; returns the final position."""

        last: int | None = None
        for _ in range(self.scroll_end_attempts):
            try:
                status = self.actuator.scroll_to_end()
            except ActuatorError as error:
                logger.warning("Scroll to end failed: %s", error)
                self._sleep(self.scroll_pause_seconds)
                continue
            if status.at_end or status.position == last:
                return status.position
            last = status.position
            self._sleep(self.scroll_pause_seconds)
        logger.warning("Result list did not settle after %d attempts", self.scroll_end_attempts)
        return last or 0

    def _scan_visible(self, *, matcher: Matcher, seen: set[int], summary: HarvestSummary) -> int:
        try:
            items = self.actuator.list_visible_items()
        except ActuatorError as error:
            logger.warning("Listing visible items failed: %s", error)
            return 0

        new_items = 0
        for item in reversed(items):
            if item.item_index in seen:
                continue
            seen.add(item.item_index)
            new_items += 1
            summary.items_seen += 1
            try:
                self._harvest_item(item=item, matcher=matcher, summary=summary)
            except Exception:  # noqa: BLE001
                summary.item_errors += 1
                logger.exception("Failed to harvest item %d", item.item_index)
        return new_items

    def _harvest_item(
        self,
        *,
        item: VisibleItem,
        matcher: Matcher,
        summary: HarvestSummary,
    ) -> None:
        urls = self._artifact_urls(item.artifact_urls)
        text = item.text_fragment.strip()
        if not text or not urls:
            summary.items_without_artifacts += 1
            return

        job = matcher.match(text)
        if job is None:
            summary.items_unmatched += 1
            logger.warning(
                "No job matches item %d (%r); artifacts not attributed: %s",
                item.item_index,
                text[:60],
                urls,
            )
            return

        summary.items_matched += 1
        for position, url in enumerate(urls, start=1):
            operation = self.store.find_operation_by_url(job_id=job.id, artifact_url=url)
            if operation is not None:
                take_index = operation.take_index
            else:
                take_index = self.store.free_take_index(job_id=job.id, preferred=position)
            created = self.store.enqueue_download(
                DownloadCreate(
                    job_id=job.id,
                    take_index=take_index,
                    source_url=url,
                    target_filename=self.naming.filename_for(
                        job_index=job.index,
                        tail_key=job.tail_key,
                        take_index=take_index,
                        model=operation.model if operation is not None else None,
                        duration_seconds=(
                            operation.duration_seconds if operation is not None else None
                        ),
                    ),
                    operation_id=operation.id if operation is not None else None,
                ),
            )
            if created is None:
                summary.downloads_existing += 1
            else:
                summary.downloads_created += 1

    def _artifact_urls(self, urls: list[str]) -> list[str]:
        selected: list[str] = []
        for url in urls:
            if url in selected:
                continue
            if self.artifact_url_patterns and not any(
                pattern in url for pattern in self.artifact_url_patterns
            ):
                continue
            selected.append(url)
        return selected
