from __future__ import annotations

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from fakes import FakePage, fake_scripts, fast_settings, make_session, sequence, transport_error
from webchat_driver.automation.errors import TransportError
from webchat_driver.automation.watcher import ResponseWatcher, stability_window
from webchat_driver.models.workflow import WaitOutcome


def _watch(page: FakePage, timeout: float = 0.5, baseline_count=None, **settings):
    session, _, _ = make_session(page)
    watcher = ResponseWatcher(session, fast_settings(**settings), fake_scripts())
    return asyncio.run(watcher.wait_for_completion(timeout, baseline_count))


@pytest.mark.parametrize(
    "length, window",
    [(0, 3), (499, 3), (500, 5), (1999, 5), (2000, 7), (10000, 7)],
)
def test_stability_window_grows_with_length(length, window) -> None:
    assert stability_window(length) == window


def test_short_answer_completes_after_three_stable_polls() -> None:
    page = FakePage.ready()
    page.results["probe:response_text"] = "Hello world"

    result = _watch(page)
    assert result.outcome == WaitOutcome.COMPLETED
    assert result.text == "Hello world"
    # first sighting plus three unchanged polls
    assert result.polls == 4


def test_500_char_answer_needs_five_stable_polls() -> None:
    page = FakePage.ready()
    page.results["probe:response_text"] = "x" * 500

    result = _watch(page, timeout=2)
    assert result.outcome == WaitOutcome.COMPLETED
    assert result.polls == 6


def test_growing_text_resets_the_stability_count() -> None:
    page = FakePage.ready()
    page.results["probe:response_text"] = sequence("He", "Hell", "Hello", "Hello")

    result = _watch(page)
    assert result.text == "Hello"
    # "Hello" first seen on poll 3, stable on polls 4, 5 and 6
    assert result.polls == 6


def test_never_completes_while_generating() -> None:
    page = FakePage.ready()
    page.results["probe:generating"] = True
    page.results["probe:response_text"] = "Hello wor"

    result = _watch(page, timeout=0.2)
    assert result.outcome == WaitOutcome.TIMEOUT
    assert result.text == "Hello wor"
    assert result.completed is False


def test_grace_recheck_catches_generation_restarting() -> None:
    page = FakePage.ready()
    page.results["probe:response_text"] = "Hello"
    # polls 1-4 idle, grace re-check sees generating, then idle again
    page.results["probe:generating"] = sequence(False, False, False, False, True, False)

    result = _watch(page)
    assert result.outcome == WaitOutcome.COMPLETED
    assert result.polls == 7


def test_fatal_phrase_fails_the_wait() -> None:
    page = FakePage.ready()
    page.results["probe:response_text"] = "partial"
    page.results["probe:generating"] = True
    page.results["probe:fatal_phrase"] = sequence("", "대답이 중지되었습니다")

    result = _watch(page)
    assert result.outcome == WaitOutcome.FAILED
    assert result.detail == "대답이 중지되었습니다"
    assert result.text == "partial"
    assert page.args_for("probe:fatal_phrase")[0] == {"phrases": fake_scripts().fatal_phrases, "baseline": None}


def test_image_marker_without_text_completes_as_image() -> None:
    page = FakePage.ready()
    page.results["probe:generated_image"] = sequence(False, True)

    result = _watch(page)
    assert result.outcome == WaitOutcome.IMAGE
    assert result.completed is True
    assert result.polls == 2


def test_image_marker_is_ignored_while_generating() -> None:
    page = FakePage.ready()
    page.results["probe:generated_image"] = True
    page.results["probe:generating"] = True

    assert _watch(page, timeout=0.1).outcome == WaitOutcome.TIMEOUT


def test_older_answers_below_the_baseline_are_ignored() -> None:
    page = FakePage.ready()
    page.results["probe:response_count"] = 1
    page.results["probe:response_text"] = "old answer"

    result = _watch(page, timeout=0.1, baseline_count=1)
    assert result.outcome == WaitOutcome.TIMEOUT
    assert result.text == ""
    assert page.called("probe:response_text") == 0


def test_new_answer_beyond_the_baseline_completes() -> None:
    page = FakePage.ready()
    page.results["probe:response_count"] = sequence(1, 1, 2)
    page.results["probe:response_text"] = "new answer"

    result = _watch(page, baseline_count=1)
    assert result.outcome == WaitOutcome.COMPLETED
    assert result.text == "new answer"


def test_transient_probe_error_skips_a_poll() -> None:
    page = FakePage.ready()
    page.results["probe:response_text"] = sequence(
        "Hello", PlaywrightError("Execution context was destroyed"), "Hello"
    )

    result = _watch(page)
    assert result.outcome == WaitOutcome.COMPLETED
    assert result.text == "Hello"


def test_transport_error_propagates() -> None:
    page = FakePage.ready()
    page.results["probe:generating"] = transport_error()

    with pytest.raises(TransportError):
        _watch(page)


def test_timeout_respects_the_ceiling() -> None:
    page = FakePage.ready()
    page.results["probe:generating"] = True

    result = _watch(page, timeout=0.1)
    assert result.outcome == WaitOutcome.TIMEOUT
    assert 0.1 <= result.elapsed < 1


class ChatLog:
    """A chat history standing in for the page's answer turns.

    ``arrive`` answers are appended one by one once ``delay`` count reads
    have passed. The marker handlers only look at turns from the baseline
    on, like the page scripts do.
    """

    def __init__(self, *answers: str, arrive=(), delay: int = 0):
        self.answers = list(answers)
        self.arriving = list(arrive)
        self.delay = delay
        self.reads = 0

    def count(self, _arg=None) -> int:
        self.reads += 1
        if self.arriving and self.reads > self.delay:
            self.answers.append(self.arriving.pop(0))
        return len(self.answers)

    def latest(self, _arg=None) -> str:
        return self.answers[-1] if self.answers else ""

    def _since(self, baseline):
        start = len(self.answers) - 1 if baseline is None else baseline
        return self.answers[max(start, 0):]

    def fatal(self, arg) -> str:
        return next((p for answer in self._since(arg["baseline"]) for p in arg["phrases"] if p in answer), "")

    def install(self, page: FakePage) -> None:
        page.results["probe:response_count"] = self.count
        page.results["probe:response_text"] = self.latest
        page.results["probe:fatal_phrase"] = self.fatal


def test_image_marker_is_not_read_before_a_new_answer_exists() -> None:
    page = FakePage.ready()
    log = ChatLog("an earlier answer with a picture", arrive=["New answer"], delay=4)
    log.install(page)
    # anything image-like on the page (avatars, older answers) would say yes
    page.results["probe:generated_image"] = True

    result = _watch(page, baseline_count=1)

    assert result.outcome == WaitOutcome.COMPLETED
    assert result.text == "New answer"
    assert set(page.args_for("probe:generated_image")) == {1}
    # four polls before the answer appeared never looked for an image
    assert page.called("probe:generated_image") == page.called("probe:response_count") - 4


def test_stopped_phrase_in_an_earlier_answer_does_not_fail_the_wait() -> None:
    page = FakePage.ready()
    log = ChatLog("You stopped this response", arrive=["New answer"], delay=2)
    log.install(page)

    result = _watch(page, baseline_count=1)

    assert result.outcome == WaitOutcome.COMPLETED
    assert result.text == "New answer"


def test_stopped_phrase_in_the_new_answer_fails_the_wait() -> None:
    page = FakePage.ready()
    log = ChatLog("Older answer", arrive=["Response stopped"], delay=1)
    log.install(page)

    result = _watch(page, baseline_count=1)

    assert result.outcome == WaitOutcome.FAILED
    assert result.detail == "Response stopped"


def test_completion_waits_for_the_input_to_come_back() -> None:
    page = FakePage.ready()
    page.results["probe:response_text"] = "Hello world"
    page.results["probe:ready_for_next_input"] = sequence(False, False, True)

    result = _watch(page, ready_for_input_timeout=1)
    assert result.outcome == WaitOutcome.COMPLETED
    assert page.called("probe:ready_for_next_input") == 3


def test_input_that_never_comes_back_still_returns_the_answer() -> None:
    page = FakePage.ready()
    page.results["probe:response_text"] = "Hello world"
    page.results["probe:ready_for_next_input"] = False

    result = _watch(page, ready_for_input_timeout=0.05)
    assert result.outcome == WaitOutcome.COMPLETED
    assert result.text == "Hello world"
    assert page.called("probe:ready_for_next_input") >= 2
