from __future__ import annotations

from datetime import date

import allure

from flow_batch.jobs.models import OPERATION_STATE_FAILED, DownloadCreate, OperationUpdate
from flow_batch.jobs.naming import ArtifactNaming
from flow_batch.jobs.repository import JobStore
from flow_batch.orchestrator.contracts import VisibleItem
from flow_batch.orchestrator.correlator import EventCorrelator
from flow_batch.orchestrator.harvest import HarvestController

pytestmark = [
    allure.epic("Harvest"),
    allure.feature("Result List Scan"),
]

PATTERNS = ("storage.googleapis.com",)


def _prompt(index: int) -> str:
    return f"A lighthouse keeper walking along wet sand at dusk, scene number {index}"


def _item(index: int, *urls: str | None) -> VisibleItem:
    return VisibleItem(
        item_index=index,
        text_fragment=_prompt(index),
        artifact_urls=list(urls),
    )


def _url(index: int, take: int = 1) -> str:
    return f"https://storage.googleapis.com/v/{index}_{take}.mp4"


def _controller(store: JobStore, actuator, record_sleep, **overrides) -> HarvestController:
    options = {
        "naming": ArtifactNaming(today=lambda: date(2025, 10, 19)),
        "artifact_url_patterns": PATTERNS,
        "scroll_step": 300,
        "idle_steps": 3,
        "scroll_pause_seconds": 0.0,
        "sleep": record_sleep,
    }
    options.update(overrides)
    return HarvestController(store=store, actuator=actuator, **options)


def test_backward_scan_visits_every_item_once(store, make_actuator, record_sleep) -> None:
    store.ingest_jobs([_prompt(index) for index in range(10)])
    actuator = make_actuator(items=[_item(index, _url(index)) for index in range(10)], page_size=3)

    summary = _controller(store, actuator, record_sleep).run()

    assert summary.items_seen == 10
    assert summary.items_matched == 10
    assert summary.downloads_created == 10
    assert actuator.position == 0
    downloads = store.list_downloads()
    assert [d.job_index for d in downloads] == list(range(1, 11))
    assert downloads[0].target_filename.startswith("2025-10-19_001_")


def test_multiple_takes_get_url_positions(store, make_actuator, record_sleep) -> None:
    store.ingest_jobs([_prompt(0)])
    actuator = make_actuator(
        items=[_item(0, _url(0, 1), _url(0, 2), _url(0, 1), "https://other.example/x.jpg")],
    )

    summary = _controller(store, actuator, record_sleep).run()

    assert summary.downloads_created == 2
    assert [(d.take_index, d.source_url) for d in store.list_downloads()] == [
        (1, _url(0, 1)),
        (2, _url(0, 2)),
    ]


def test_existing_downloads_are_not_duplicated(store, make_actuator, record_sleep) -> None:
    store.ingest_jobs([_prompt(0)])
    job = store.list_jobs()[0]
    store.enqueue_download(
        DownloadCreate(
            job_id=job.id,
            take_index=1,
            source_url=_url(0),
            target_filename="already.mp4",
        ),
    )
    actuator = make_actuator(items=[_item(0, _url(0))])

    summary = _controller(store, actuator, record_sleep).run()

    assert summary.downloads_existing == 1
    assert summary.downloads_created == 0
    assert [d.target_filename for d in store.list_downloads()] == ["already.mp4"]


def test_items_without_artifacts_or_match_are_skipped(store, make_actuator, record_sleep) -> None:
    store.ingest_jobs([_prompt(0)])
    actuator = make_actuator(
        items=[
            _item(0),
            VisibleItem(
                item_index=1,
                text_fragment="A bowl of ramen on a wooden table",
                artifact_urls=[_url(99)],
            ),
        ],
    )

    summary = _controller(store, actuator, record_sleep).run()

    assert summary.items_without_artifacts == 1
    assert summary.items_unmatched == 1
    assert store.list_downloads() == []


def test_failing_item_does_not_abort_the_scan(store, make_actuator, record_sleep) -> None:
    store.ingest_jobs([_prompt(0), _prompt(1)])
    actuator = make_actuator(items=[_item(0, _url(0)), _item(1, None)])

    summary = _controller(store, actuator, record_sleep).run()

    assert summary.item_errors == 1
    assert summary.downloads_created == 1
    assert [d.job_index for d in store.list_downloads()] == [1]


def test_scan_stops_after_idle_steps_without_new_items(store, make_actuator, record_sleep) -> None:
    class FrozenListActuator(make_actuator):
        def list_visible_items(self) -> list[VisibleItem]:
            return self.items[-self.page_size :]

    store.ingest_jobs([_prompt(index) for index in range(10)])
    actuator = FrozenListActuator(items=[_item(index, _url(index)) for index in range(10)])

    summary = _controller(store, actuator, record_sleep, idle_steps=2).run()

    assert summary.items_seen == 3
    assert summary.scroll_steps == 2
    assert actuator.position == 100


def _correlated_job(store: JobStore, observer) -> int:
    EventCorrelator(store=store, naming=ArtifactNaming(today=lambda: date(2025, 10, 19))).attach(
        observer,
    )
    store.ingest_jobs([_prompt(0)])
    job = store.next_queued()
    assert job is not None and store.mark_submitting(job.id)
    return job.id


def _takes(store: JobStore) -> list[tuple[int, str]]:
    return [(d.take_index, d.source_url) for d in store.list_downloads()]


def test_harvest_reuses_take_of_operation_that_reported_the_url(
    store,
    observer,
    make_actuator,
    record_sleep,
) -> None:
    _correlated_job(store, observer)
    observer.ack("op-1", "op-2")
    observer.poll(OperationUpdate(op_name="op-1", state=OPERATION_STATE_FAILED))
    observer.succeed("op-2", _url(0, 2))
    actuator = make_actuator(items=[_item(0, _url(0, 2))])

    summary = _controller(store, actuator, record_sleep).run()

    assert summary.downloads_created == 0
    assert summary.downloads_existing == 1
    [download] = store.list_downloads()
    assert download.take_index == 2
    assert download.target_filename.endswith("_02_8s.mp4")


def test_harvest_after_retry_keeps_one_download_per_artifact(
    store,
    observer,
    make_actuator,
    record_sleep,
) -> None:
    job_id = _correlated_job(store, observer)
    observer.ack("op-1", "op-2")
    observer.succeed("op-1", _url(0, 1))
    observer.poll(OperationUpdate(op_name="op-2", state=OPERATION_STATE_FAILED))
    store.retry_job(index=1)
    assert store.mark_submitting(job_id)
    observer.ack("op-3", "op-4")
    observer.succeed("op-3", _url(0, 3))
    observer.succeed("op-4", _url(0, 4))
    actuator = make_actuator(
        items=[
            _item(0, _url(0, 1)),
            VisibleItem(
                item_index=1,
                text_fragment=_prompt(0),
                artifact_urls=[_url(0, 3), _url(0, 4)],
            ),
        ],
    )

    summary = _controller(store, actuator, record_sleep).run()

    assert summary.downloads_created == 0
    assert _takes(store) == [(1, _url(0, 1)), (2, _url(0, 3)), (3, _url(0, 4))]


def test_unreported_url_gets_a_free_take(store, observer, make_actuator, record_sleep) -> None:
    _correlated_job(store, observer)
    observer.ack("op-1")
    observer.succeed("op-1", _url(0, 1))
    actuator = make_actuator(items=[_item(0, _url(0, 9), _url(0, 1))])

    summary = _controller(store, actuator, record_sleep).run()

    assert summary.downloads_created == 1
    assert _takes(store) == [(1, _url(0, 1)), (2, _url(0, 9))]
