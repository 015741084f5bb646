"""Contracts for the external Actuator and Observer collaborators."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from flow_batch.jobs.models import OperationUpdate


class ActuatorError(RuntimeError):
    """Actuator failed to perform a UI interaction."""


class TransientActuatorError(ActuatorError):
    """UI element was not ready, went stale or had its click intercepted."""


class ActuatorSessionError(ActuatorError):
    """Actuator session could not be established; nothing can proceed."""


@dataclass(slots=True)
class ScrollStatus:
    """Scroll position of the results surface after a scroll command."""

    position: int
    at_end: bool = False


@dataclass(slots=True)
class VisibleItem:
    """One rendered entry of the virtualized result list."""

    item_index: int
    text_fragment: str
    artifact_urls: list[str] = field(default_factory=list)


class Actuator(Protocol):
    """Drives the remote UI. Any call may fail with `ActuatorError`."""

    def submit(self, text: str) -> None: ...

    def scroll_to_end(self) -> ScrollStatus: ...

    def scroll_step(self, delta: int) -> int: ...

    def list_visible_items(self) -> list[VisibleItem]: ...


@dataclass(slots=True)
class SubmitAck:
    """Service confirmed new operations for the most recently submitted job."""

    operations: list[OperationUpdate]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SubmitAck:
        return cls(operations=_parse_operations(payload, kind="submitAck"))


@dataclass(slots=True)
class PollUpdate:
    """Service reported current state for previously known operations."""

    operations: list[OperationUpdate]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PollUpdate:
        return cls(operations=_parse_operations(payload, kind="pollUpdate"))


SubmitAckHandler = Callable[[SubmitAck], None]
PollUpdateHandler = Callable[[PollUpdate], None]


class Observer(Protocol):
    """Passively reports events derived from the service's network traffic."""

    def subscribe(
        self,
        *,
        on_submit_ack: SubmitAckHandler,
        on_poll_update: PollUpdateHandler,
    ) -> None: ...


def _parse_operations(payload: dict[str, Any], *, kind: str) -> list[OperationUpdate]:
    """Parse either the flat event shape or the service's nested response shape.

    Flat: ``{"operations": [{"opName", "state", "artifactUrl"}]}``.
    Nested: ``{"operations": [{"operation": {"name", "metadata": {"video":
    {"fifeUrl", "model"}}}, "status"}]}``.
    """

    if not isinstance(payload, dict):
        raise TypeError(f"{kind} payload must be an object")
    raw_operations = payload.get("operations", [])
    if not isinstance(raw_operations, list):
        raise TypeError(f"{kind}.operations must be an array")

    operations: list[OperationUpdate] = []
    for entry in raw_operations:
        if not isinstance(entry, dict):
            raise TypeError(f"{kind}.operations entry must be an object")
        nested = entry.get("operation") if isinstance(entry.get("operation"), dict) else {}
        video = _dig(nested, "metadata", "video")

        op_name = entry.get("opName") or entry.get("op_name") or nested.get("name")
        if not isinstance(op_name, str) or not op_name.strip():
            raise ValueError(f"{kind}.operations entry is missing an operation name")

        duration = entry.get("durationSeconds") or video.get("durationSeconds")
        operations.append(
            OperationUpdate(
                op_name=op_name,
                state=_optional_str(entry.get("state") or entry.get("status")),
                artifact_url=_optional_str(
                    entry.get("artifactUrl") or entry.get("artifact_url") or video.get("fifeUrl"),
                ),
                model=_optional_str(entry.get("model") or video.get("model")),
                duration_seconds=int(duration) if duration else None,
            ),
        )
    return operations


def _dig(payload: dict[str, Any], *keys: str) -> dict[str, Any]:
    current: Any = payload
    for key in keys:
        if not isinstance(current, dict):
            return {}
        current = current.get(key)
    return current if isinstance(current, dict) else {}


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
