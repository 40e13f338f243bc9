from __future__ import annotations

import asyncio
from typing import Any

import pytest

from fakes import fake_scripts, fast_settings, make_session
from webchat_driver.automation.diagnostics import PageDiagnostics
from webchat_driver.automation.errors import AutomationBusyError, TransportError
from webchat_driver.automation.workflow import WorkflowOrchestrator
from webchat_driver.models.actions import ActionError, ActionResult
from webchat_driver.models.workflow import (
    WaitOutcome,
    WaitResult,
    WorkflowFailure,
    WorkflowRequest,
    WorkflowStage,
)

OK = ActionResult.success()
NOT_FOUND = ActionResult.failure(ActionError.NOT_FOUND)


class ScriptedExecutor:
    """Returns queued results per action; the last queued result repeats."""

    def __init__(self, **results: Any):
        self.results = {name: list(values) if isinstance(values, list) else [values] for name, values in results.items()}
        self.calls: list[tuple[str, Any]] = []

    def _next(self, name: str, arg: Any = None) -> ActionResult:
        self.calls.append((name, arg))
        queue = self.results.get(name, [OK])
        value = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(value, BaseException):
            raise value
        return value

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def args(self, name: str) -> list[Any]:
        return [arg for call, arg in self.calls if call == name]

    async def start_new_chat(self):
        return self._next("start_new_chat")

    async def select_model(self, name):
        return self._next("select_model", name)

    async def enable_image_generation(self):
        return self._next("enable_image_generation")

    async def upload_file(self, path):
        return self._next("upload_file", path)

    async def wait_for_attachment(self, timeout=None):
        return self._next("wait_for_attachment")

    async def send_message(self, text):
        return self._next("send_message", text)

    async def extract_image(self):
        return self._next("extract_image")

    async def delete_current_chat(self):
        return self._next("delete_current_chat")

    async def reload(self):
        return self._next("reload")

    async def navigate(self, url=None):
        return self._next("navigate", url)


class ScriptedWatcher:
    def __init__(self, *waits: WaitResult):
        self.waits = list(waits) or [WaitResult(outcome=WaitOutcome.COMPLETED, text="answer")]
        self.baselines: list[Any] = []
        self.count = 0

    async def response_count(self):
        self.count += 1
        return self.count

    async def wait_for_completion(self, timeout=None, baseline_count=None):
        self.baselines.append(baseline_count)
        return self.waits.pop(0) if len(self.waits) > 1 else self.waits[0]


def _completed(text: str = "answer") -> WaitResult:
    return WaitResult(outcome=WaitOutcome.COMPLETED, text=text)


def _timeout(text: str = "") -> WaitResult:
    return WaitResult(outcome=WaitOutcome.TIMEOUT, text=text)


def _run(request: WorkflowRequest, executor: ScriptedExecutor, watcher: ScriptedWatcher, session=None, **settings):
    session = session or make_session()[0]
    orchestrator = WorkflowOrchestrator(
        session,
        executor=executor,
        watcher=watcher,
        diagnostics=PageDiagnostics(fast_settings(), fake_scripts()),
        settings=fast_settings(**settings),
        scripts=fake_scripts(),
    )
    try:
        return asyncio.run(orchestrator.run(request))
    finally:
        orchestrator.close()


def test_happy_path_runs_every_stage_once() -> None:
    executor = ScriptedExecutor()
    watcher = ScriptedWatcher(_completed("The answer"))
    request = WorkflowRequest(prompt="Describe", file_path="/tmp/a.png", model="pro", cleanup=True)

    result = _run(request, executor, watcher)

    assert result.success is True
    assert result.text == "The answer"
    assert result.attempts == 1
    assert [name for name, _ in executor.calls] == [
        "start_new_chat",
        "select_model",
        "upload_file",
        "wait_for_attachment",
        "send_message",
        "delete_current_chat",
    ]
    assert executor.args("send_message") == ["Describe"]
    # the baseline is taken before sending
    assert watcher.baselines == [1]


def test_fallback_prompt_is_used_on_the_third_attempt() -> None:
    executor = ScriptedExecutor()
    watcher = ScriptedWatcher(_timeout(), _timeout(), _completed("short answer"))
    request = WorkflowRequest(prompt="long prompt", fallback_prompt="short prompt")

    result = _run(request, executor, watcher)

    assert result.success is True
    assert result.attempts == 3
    assert executor.args("send_message") == ["long prompt", "long prompt", "short prompt"]
    assert [r.prompt_kind for r in result.history] == ["primary", "primary", "fallback"]
    assert result.history[0].failed_stage == WorkflowStage.AWAIT_RESPONSE


def test_exhaustion_returns_a_typed_failure_and_goes_home() -> None:
    executor = ScriptedExecutor(send_message=NOT_FOUND)
    watcher = ScriptedWatcher()

    result = _run(WorkflowRequest(prompt="hi"), executor, watcher)

    assert result.success is False
    assert result.failure == WorkflowFailure.WORKFLOW_EXHAUSTED
    assert result.attempts == 3
    assert result.failed_stage == WorkflowStage.SEND_PROMPT
    assert len(result.history) == 3
    assert executor.count("start_new_chat") == 3
    assert executor.args("navigate") == ["https://gemini.google.com/app"]


def test_attempts_never_exceed_the_cap() -> None:
    executor = ScriptedExecutor(start_new_chat=NOT_FOUND)
    result = _run(WorkflowRequest(prompt="hi"), executor, ScriptedWatcher(), max_attempts=2)
    assert result.attempts == 2
    assert executor.count("start_new_chat") == 2


def test_two_upload_failures_force_exactly_one_reload() -> None:
    executor = ScriptedExecutor(upload_file=[NOT_FOUND, NOT_FOUND, OK])
    watcher = ScriptedWatcher(_completed())
    request = WorkflowRequest(prompt="hi", file_path="/tmp/a.png")

    result = _run(request, executor, watcher)

    assert result.success is True
    assert result.attempts == 3
    assert executor.count("reload") == 1
    assert [r.page_reset for r in result.history] == [False, True, False]
    names = [name for name, _ in executor.calls]
    # the reload happens between the second failure and the third attempt
    assert names.index("reload") < len(names) - 1 - names[::-1].index("start_new_chat")


def test_failed_reload_is_not_recorded_as_a_page_reset() -> None:
    executor = ScriptedExecutor(upload_file=[NOT_FOUND, NOT_FOUND, OK], reload=ActionResult.failure(ActionError.TIMEOUT))
    result = _run(WorkflowRequest(prompt="hi", file_path="/tmp/a.png"), executor, ScriptedWatcher())

    assert result.success is True
    assert executor.count("reload") == 1
    assert [r.page_reset for r in result.history] == [False, False, False]


def test_attachment_verification_failures_also_count_toward_the_reload() -> None:
    executor = ScriptedExecutor(upload_file=OK, wait_for_attachment=[NOT_FOUND, NOT_FOUND, OK])
    result = _run(WorkflowRequest(prompt="hi", file_path="/tmp/a.png"), executor, ScriptedWatcher())

    assert result.success is True
    assert executor.count("reload") == 1


def test_non_consecutive_upload_failures_do_not_reload() -> None:
    executor = ScriptedExecutor(upload_file=[NOT_FOUND, OK, NOT_FOUND])
    watcher = ScriptedWatcher(_timeout())
    result = _run(WorkflowRequest(prompt="hi", file_path="/tmp/a.png"), executor, watcher)

    assert result.success is False
    assert executor.count("reload") == 0


def test_extraction_regenerates_before_a_full_retry() -> None:
    executor = ScriptedExecutor(extract_image=[NOT_FOUND, ActionResult.success(status="extracted", payload="QUJD")])
    watcher = ScriptedWatcher(_completed(""), _completed(""))
    request = WorkflowRequest(prompt="draw a cat", expect_image=True)

    result = _run(request, executor, watcher)

    assert result.success is True
    assert result.image_base64 == "QUJD"
    assert result.attempts == 1
    assert executor.count("send_message") == 2
    assert executor.count("start_new_chat") == 1


def test_extraction_failure_falls_back_to_a_full_retry() -> None:
    executor = ScriptedExecutor(
        extract_image=[NOT_FOUND, NOT_FOUND, ActionResult.success(status="extracted", payload="QUJD")]
    )
    request = WorkflowRequest(prompt="draw a cat", expect_image=True)

    result = _run(request, executor, ScriptedWatcher(_completed("")))

    assert result.success is True
    assert result.attempts == 2
    assert result.history[0].failed_stage == WorkflowStage.EXTRACT_RESULT
    assert executor.count("extract_image") == 3


def test_empty_text_answer_is_not_a_success() -> None:
    executor = ScriptedExecutor()
    result = _run(WorkflowRequest(prompt="hi"), executor, ScriptedWatcher(_completed("")))

    assert result.success is False
    assert result.failed_stage == WorkflowStage.EXTRACT_RESULT


def test_partial_answer_is_accepted_only_when_asked() -> None:
    strict = _run(WorkflowRequest(prompt="hi"), ScriptedExecutor(), ScriptedWatcher(_timeout("Hello wor")))
    assert strict.success is False
    assert strict.text == "Hello wor"

    lenient = _run(
        WorkflowRequest(prompt="hi", accept_partial=True), ScriptedExecutor(), ScriptedWatcher(_timeout("Hello wor"))
    )
    assert lenient.success is True
    assert lenient.text == "Hello wor"
    assert lenient.outcome == WaitOutcome.TIMEOUT


def test_generation_failure_restarts_the_attempt() -> None:
    failed = WaitResult(outcome=WaitOutcome.FAILED, detail="대답이 중지되었습니다")
    result = _run(WorkflowRequest(prompt="hi"), ScriptedExecutor(), ScriptedWatcher(failed, _completed()))

    assert result.success is True
    assert result.attempts == 2
    assert "중지" in result.history[0].detail


def test_cleanup_failure_keeps_the_result() -> None:
    executor = ScriptedExecutor(delete_current_chat=NOT_FOUND)
    result = _run(WorkflowRequest(prompt="hi", cleanup=True), executor, ScriptedWatcher())
    assert result.success is True


def test_transport_error_escapes_the_workflow() -> None:
    executor = ScriptedExecutor(send_message=TransportError("gone"))
    with pytest.raises(TransportError):
        _run(WorkflowRequest(prompt="hi"), executor, ScriptedWatcher())
    assert executor.count("send_message") == 1


def test_disconnected_session_is_reported_not_raised() -> None:
    session, _, browser = make_session()
    browser.emit("disconnected")

    result = _run(WorkflowRequest(prompt="hi"), ScriptedExecutor(), ScriptedWatcher(), session=session)
    assert result.success is False
    assert result.failure == WorkflowFailure.NOT_CONNECTED


def test_orchestrator_claims_the_session_until_closed() -> None:
    session, _, _ = make_session()
    first = WorkflowOrchestrator(session, ScriptedExecutor(), ScriptedWatcher(), settings=fast_settings())

    with pytest.raises(AutomationBusyError):
        WorkflowOrchestrator(session, ScriptedExecutor(), ScriptedWatcher(), settings=fast_settings())

    first.close()
    second = WorkflowOrchestrator(session, ScriptedExecutor(), ScriptedWatcher(), settings=fast_settings())
    assert session.ownership.owner == "workflow"
    second.close()
    assert session.ownership.is_owned is False


def test_closed_orchestrator_cannot_run() -> None:
    session, _, _ = make_session()
    orchestrator = WorkflowOrchestrator(session, ScriptedExecutor(), ScriptedWatcher(), settings=fast_settings())
    orchestrator.close()

    with pytest.raises(AutomationBusyError):
        asyncio.run(orchestrator.run(WorkflowRequest(prompt="hi")))
