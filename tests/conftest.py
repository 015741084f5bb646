"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from flow_batch.jobs.models import OPERATION_STATE_SUCCESSFUL, OperationUpdate
from flow_batch.jobs.repository import JobStore
from flow_batch.orchestrator.contracts import (
    PollUpdate,
    PollUpdateHandler,
    ScrollStatus,
    SubmitAck,
    SubmitAckHandler,
    VisibleItem,
)

ITEM_HEIGHT = 100


class FakeActuator:
    """Scriptable stand-in for the remote UI.

    `failures` are raised by successive `submit` calls before any succeeds.
    The result list is a column of `items`, `ITEM_HEIGHT` pixels each, with
    `page_size` items visible at a time.
    """

    def __init__(
        self,
        *,
        failures: list[BaseException] | None = None,
        items: list[VisibleItem] | None = None,
        page_size: int = 3,
        on_submit=None,
    ) -> None:
        self.failures = list(failures or [])
        self.items = list(items or [])
        self.page_size = page_size
        self.on_submit = on_submit
        self.submit_calls: list[str] = []
        self.submitted: list[str] = []
        self.position = 0

    def submit(self, text: str) -> None:
        self.submit_calls.append(text)
        if self.failures:
            raise self.failures.pop(0)
        self.submitted.append(text)
        if self.on_submit is not None:
            self.on_submit(text)

    @property
    def max_position(self) -> int:
        return max(0, len(self.items) - self.page_size) * ITEM_HEIGHT

    def scroll_to_end(self) -> ScrollStatus:
        self.position = self.max_position
        return ScrollStatus(position=self.position, at_end=True)

    def scroll_step(self, delta: int) -> int:
        self.position = min(self.max_position, max(0, self.position + delta))
        return self.position

    def list_visible_items(self) -> list[VisibleItem]:
        top = self.position // ITEM_HEIGHT
        return self.items[top : top + self.page_size]


class FakeObserver:
    """Delivers events to whatever handlers subscribed, on demand."""

    def __init__(self) -> None:
        self.on_submit_ack: SubmitAckHandler | None = None
        self.on_poll_update: PollUpdateHandler | None = None

    def subscribe(
        self,
        *,
        on_submit_ack: SubmitAckHandler,
        on_poll_update: PollUpdateHandler,
    ) -> None:
        self.on_submit_ack = on_submit_ack
        self.on_poll_update = on_poll_update

    def ack(self, *op_names: str) -> None:
        assert self.on_submit_ack is not None
        self.on_submit_ack(
            SubmitAck(
                operations=[
                    OperationUpdate(op_name=name, state="MEDIA_GENERATION_STATUS_PENDING")
                    for name in op_names
                ],
            ),
        )

    def poll(self, *updates: OperationUpdate) -> None:
        assert self.on_poll_update is not None
        self.on_poll_update(PollUpdate(operations=list(updates)))

    def succeed(self, op_name: str, url: str, *, model: str | None = None) -> None:
        self.poll(
            OperationUpdate(
                op_name=op_name,
                state=OPERATION_STATE_SUCCESSFUL,
                artifact_url=url,
                model=model,
            ),
        )


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[JobStore]:
    job_store = JobStore(tmp_path / "flow.db")
    job_store.init_schema()
    try:
        yield job_store
    finally:
        job_store.close()


@pytest.fixture()
def observer() -> FakeObserver:
    return FakeObserver()


@pytest.fixture()
def make_actuator():
    return FakeActuator


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def record_sleep(sleeps: list[float]):
    return sleeps.append
