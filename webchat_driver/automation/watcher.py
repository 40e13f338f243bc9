"""Detecting when a streamed answer has finished rendering."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError

from ..models.settings import AutomationSettings
from ..models.workflow import WaitOutcome, WaitResult
from .browser import Session
from .errors import TransportError
from .scripts import ScriptTable
from .timing import poll_until

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def stability_window(length: int) -> int:
    """Consecutive unchanged polls required before text of ``length`` chars counts as final."""
    if length < 500:
        return 3
    if length < 2000:
        return 5
    return 7


@dataclass
class _Observation:
    generating: bool
    text: str
    image: bool
    fatal: str


@dataclass
class _Verdict:
    outcome: WaitOutcome
    text: str
    detail: str = ""


class _StabilityTracker:
    """Counts how long the latest response text has stayed the same."""

    def __init__(self):
        self.last_text = ""
        self.best_text = ""
        self.stable_polls = 0

    def reset(self, text: str) -> None:
        self.last_text = text
        self.stable_polls = 0

    def update(self, obs: _Observation) -> Optional[WaitOutcome]:
        """Returns IMAGE, COMPLETED (to be confirmed), or None to keep polling."""
        if obs.text:
            self.best_text = obs.text
        if obs.generating:
            self.reset(obs.text)
            return None
        if obs.text:
            if obs.text == self.last_text:
                self.stable_polls += 1
            else:
                self.reset(obs.text)
            if self.stable_polls >= stability_window(len(obs.text)):
                return WaitOutcome.COMPLETED
            return None
        if obs.image:
            return WaitOutcome.IMAGE
        return None


class ResponseWatcher:
    """Polls the page until the newest answer is complete, failed, or out of time."""

    def __init__(
        self,
        session: Session,
        settings: Optional[AutomationSettings] = None,
        scripts: Optional[ScriptTable] = None,
    ):
        self._session = session
        self._settings = settings or AutomationSettings()
        self._scripts = scripts or ScriptTable()

    async def _probe(self, name: str, arg: Any = None) -> Any:
        return await self._session.evaluate(
            self._scripts.probe(name), arg, timeout=self._settings.action_timeout
        )

    async def response_count(self) -> int:
        """Number of answers on the page. Pass it as ``baseline_count`` before sending."""
        try:
            return int(await self._probe("response_count") or 0)
        except TransportError:
            raise
        except (asyncio.TimeoutError, PlaywrightError, ValueError) as e:
            logger.warning(f"[WATCH] Could not count responses: {e}")
            return 0

    async def _observe(self, baseline_count: Optional[int]) -> Optional[_Observation]:
        try:
            fresh = True
            if baseline_count is not None:
                fresh = int(await self._probe("response_count") or 0) > baseline_count
            generating = bool(await self._probe("generating"))
            if not fresh:
                return _Observation(generating=generating, text="", image=False, fatal="")

            # markers are only read from answers past the baseline
            fatal = str(
                await self._probe("fatal_phrase", {"phrases": self._scripts.fatal_phrases, "baseline": baseline_count})
                or ""
            )
            text = str(await self._probe("response_text") or "")
            image = bool(await self._probe("generated_image", baseline_count))
        except TransportError:
            raise
        except (asyncio.TimeoutError, PlaywrightError, ValueError) as e:
            logger.debug(f"[WATCH] Transient probe error, skipping poll: {e}")
            return None
        return _Observation(generating=generating, text=text, image=image, fatal=fatal)

    async def _confirm(self, text: str, baseline_count: Optional[int]) -> bool:
        """Grace re-check: still idle and the text did not move."""
        await asyncio.sleep(self._settings.completion_grace_delay)
        obs = await self._observe(baseline_count)
        return obs is not None and not obs.generating and obs.text == text

    async def _wait_ready_for_input(self) -> bool:
        """Give the page a short while to finish rendering and re-enable the input."""

        async def ready() -> bool:
            try:
                return bool(await self._probe("ready_for_next_input"))
            except TransportError:
                raise
            except (asyncio.TimeoutError, PlaywrightError) as e:
                logger.debug(f"[WATCH] Ready check failed: {e}")
                return False

        result = await poll_until(
            ready,
            interval=self._settings.poll_interval,
            timeout=self._settings.ready_for_input_timeout,
        )
        if not result.satisfied:
            logger.info(f"[WATCH] Input not ready after {result.elapsed:.1f}s, returning the answer anyway")
        return result.satisfied

    async def wait_for_completion(
        self,
        timeout: Optional[float] = None,
        baseline_count: Optional[int] = None,
    ) -> WaitResult:
        """Wait for the answer to settle.

        Stops on the first of: text unchanged for an adaptive number of polls
        while nothing is generating; a generated image with no text answer; a
        known fatal phrase in the new answer; the hard ``timeout``. A timeout
        keeps the best partial text. Only answers beyond ``baseline_count``
        are considered when it is given, otherwise only the latest one.
        """
        limit = timeout if timeout is not None else self._settings.response_timeout
        tracker = _StabilityTracker()
        loop = asyncio.get_event_loop()
        start = loop.time()
        logger.info(f"[WATCH] Waiting for response (timeout {limit}s, baseline {baseline_count})")

        async def step() -> Optional[_Verdict]:
            obs = await self._observe(baseline_count)
            if obs is None:
                return None
            if obs.fatal:
                return _Verdict(WaitOutcome.FAILED, tracker.best_text or obs.text, obs.fatal)

            outcome = tracker.update(obs)
            if outcome == WaitOutcome.IMAGE:
                if loop.time() - start < self._settings.image_marker_min_elapsed:
                    return None
                return _Verdict(WaitOutcome.IMAGE, "", "generated image")
            if outcome == WaitOutcome.COMPLETED:
                if await self._confirm(obs.text, baseline_count):
                    await self._wait_ready_for_input()
                    return _Verdict(WaitOutcome.COMPLETED, obs.text)
                logger.debug("[WATCH] Grace re-check saw more activity, continuing")
                tracker.reset(tracker.last_text)
            return None

        result = await poll_until(
            step,
            lambda verdict: verdict is not None,
            interval=self._settings.poll_interval,
            timeout=limit,
        )

        if result.satisfied:
            verdict = result.value
            logger.info(
                f"[WATCH] {verdict.outcome.value} after {result.elapsed:.1f}s "
                f"({len(verdict.text)} chars, {result.polls} polls)"
            )
            return WaitResult(
                outcome=verdict.outcome,
                text=verdict.text,
                elapsed=result.elapsed,
                polls=result.polls,
                detail=verdict.detail,
            )

        logger.warning(f"[WATCH] Timed out after {limit}s with {len(tracker.best_text)} chars")
        return WaitResult(
            outcome=WaitOutcome.TIMEOUT,
            text=tracker.best_text,
            elapsed=result.elapsed,
            polls=result.polls,
            detail="timeout",
        )
