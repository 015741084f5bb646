"""Deterministic actuator failure classification for submission retry policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from flow_batch.orchestrator.contracts import ActuatorSessionError, TransientActuatorError


class ActuatorFailureClass(str, Enum):
    """Normalized failure classes used by submission retry policy."""

    TRANSIENT_UI = "transient_ui"
    SESSION_LOST = "session_lost"
    NON_RETRYABLE = "non_retryable"


_SESSION_PATTERNS: tuple[str, ...] = (
    "session not created",
    "invalid session id",
    "no such window",
    "target closed",
    "browser has disconnected",
)
_TRANSIENT_UI_PATTERNS: tuple[str, ...] = (
    "not ready",
    "stale",
    "intercepted",
    "not found",
    "timeout",
    "timed out",
    "detached",
    "not interactable",
)


@dataclass(slots=True)
class ActuatorFailureClassification:
    """Normalized failure classification result."""

    failure_class: ActuatorFailureClass
    matched_rule: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        return self.failure_class == ActuatorFailureClass.TRANSIENT_UI


def classify_actuator_failure(error: BaseException) -> ActuatorFailureClassification:
    """Classify an actuator failure into a deterministic retry class.

    Typed errors win; plain exceptions from adapters that do not raise the
    typed errors are classified by message patterns.
    """

    if isinstance(error, ActuatorSessionError):
        return ActuatorFailureClassification(
            failure_class=ActuatorFailureClass.SESSION_LOST,
            matched_rule="session_error_type",
            matched_pattern=None,
        )
    if isinstance(error, TransientActuatorError):
        return ActuatorFailureClassification(
            failure_class=ActuatorFailureClass.TRANSIENT_UI,
            matched_rule="transient_error_type",
            matched_pattern=None,
        )

    haystack = f"{type(error).__name__}: {error}".lower()

    pattern = _first_match(haystack, _SESSION_PATTERNS)
    if pattern is not None:
        return ActuatorFailureClassification(
            failure_class=ActuatorFailureClass.SESSION_LOST,
            matched_rule="session_lost",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _TRANSIENT_UI_PATTERNS)
    if pattern is not None:
        return ActuatorFailureClassification(
            failure_class=ActuatorFailureClass.TRANSIENT_UI,
            matched_rule="transient_ui",
            matched_pattern=pattern,
        )

    return ActuatorFailureClassification(
        failure_class=ActuatorFailureClass.NON_RETRYABLE,
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
