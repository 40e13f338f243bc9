from __future__ import annotations

import pytest
from pydantic import ValidationError

from webchat_driver.models.actions import ActionError, ActionResult
from webchat_driver.models.session import RecoveryKind, RecoveryOutcome
from webchat_driver.models.workflow import RetryState, WorkflowRequest


def test_script_replies_map_to_soft_failures() -> None:
    assert ActionResult.from_script({"ok": True, "status": "clicked"}).ok is True
    assert ActionResult.from_script({"ok": False, "status": "not_found"}).error == ActionError.NOT_FOUND
    assert ActionResult.from_script({"ok": False, "status": "disabled"}).error == ActionError.NOT_INTERACTABLE
    assert ActionResult.from_script({"ok": False, "status": "fetch_failed"}).error == ActionError.FAILED
    assert ActionResult.from_script(None).error == ActionError.SCRIPT_ERROR
    assert ActionResult.from_script(True).ok is True


def test_script_data_becomes_the_payload() -> None:
    result = ActionResult.from_script({"ok": True, "status": "extracted", "data": "abc"})
    assert result.payload == "abc"


def test_retry_state_is_monotonic_and_capped() -> None:
    state = RetryState(max_attempts=3)
    seen = []
    while state.advance():
        seen.append(state.attempt)
    assert seen == [1, 2, 3]
    assert state.advance() is False
    assert state.attempt == 3


def test_fallback_prompt_starts_at_the_configured_attempt() -> None:
    request = WorkflowRequest(prompt="full", fallback_prompt="short")
    state = RetryState(max_attempts=3, fallback_from_attempt=3)
    prompts = []
    while state.advance():
        prompts.append(state.select_prompt(request))
    assert prompts == ["full", "full", "short"]


def test_without_fallback_the_primary_prompt_is_reused() -> None:
    request = WorkflowRequest(prompt="full")
    state = RetryState(max_attempts=3, attempt=3)
    assert state.select_prompt(request) == "full"


def test_workflow_request_is_frozen_and_needs_a_prompt() -> None:
    request = WorkflowRequest(prompt="hi")
    with pytest.raises(ValidationError):
        request.prompt = "changed"
    with pytest.raises(ValidationError):
        WorkflowRequest(prompt="")


def test_only_acting_recoveries_count_as_recovered() -> None:
    assert RecoveryOutcome(kind=RecoveryKind.RELOADED).recovered is True
    assert RecoveryOutcome(kind=RecoveryKind.CLICKED_RETRY).recovered is True
    assert RecoveryOutcome(kind=RecoveryKind.RATE_LIMITED).recovered is False
    assert RecoveryOutcome().recovered is False
