from __future__ import annotations

import allure
import pytest

from flow_batch.orchestrator.contracts import (
    ActuatorError,
    ActuatorSessionError,
    TransientActuatorError,
)
from flow_batch.orchestrator.failure_classifier import (
    ActuatorFailureClass,
    classify_actuator_failure,
)

pytestmark = [
    allure.epic("Submission"),
    allure.feature("Failure Classification"),
]


def test_typed_errors_win_over_message_patterns() -> None:
    transient = classify_actuator_failure(TransientActuatorError("invalid session id"))
    session = classify_actuator_failure(ActuatorSessionError("element not ready"))

    assert transient.failure_class == ActuatorFailureClass.TRANSIENT_UI
    assert transient.matched_rule == "transient_error_type"
    assert transient.retryable
    assert session.failure_class == ActuatorFailureClass.SESSION_LOST
    assert session.matched_rule == "session_error_type"
    assert not session.retryable


@pytest.mark.parametrize(
    ("error", "pattern"),
    [
        (RuntimeError("Prompt box not ready yet"), "not ready"),
        (RuntimeError("Stale element reference"), "stale"),
        (RuntimeError("Click intercepted by overlay"), "intercepted"),
        (TimeoutError("waiting for button"), "timeout"),
    ],
)
def test_transient_ui_messages_are_retryable(error: Exception, pattern: str) -> None:
    classification = classify_actuator_failure(error)

    assert classification.failure_class == ActuatorFailureClass.TRANSIENT_UI
    assert classification.matched_pattern == pattern
    assert classification.retryable


def test_session_messages_are_not_retryable() -> None:
    classification = classify_actuator_failure(RuntimeError("Target closed unexpectedly"))

    assert classification.failure_class == ActuatorFailureClass.SESSION_LOST
    assert classification.matched_pattern == "target closed"
    assert not classification.retryable


def test_unknown_errors_fall_back_to_non_retryable() -> None:
    classification = classify_actuator_failure(ActuatorError("quota exhausted for today"))

    assert classification.failure_class == ActuatorFailureClass.NON_RETRYABLE
    assert classification.matched_rule == "fallback_non_retryable"
    assert classification.matched_pattern is None
