"""End-to-end generation workflow with bounded retry and page resets."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Optional

from ..models.actions import ActionResult
from ..models.settings import AutomationSettings
from ..models.workflow import (
    UPLOAD_STAGES,
    AttemptRecord,
    RetryState,
    WaitOutcome,
    WaitResult,
    WorkflowFailure,
    WorkflowRequest,
    WorkflowResult,
    WorkflowStage,
)
from .actions import ActionExecutor
from .browser import Session
from .diagnostics import PageDiagnostics
from .errors import AutomationBusyError
from .scripts import ScriptTable
from .watcher import ResponseWatcher

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


@dataclass
class _AttemptOutcome:
    success: bool
    stage: Optional[WorkflowStage] = None
    detail: str = ""
    text: str = ""
    image_base64: Optional[str] = None
    wait_outcome: Optional[WaitOutcome] = None


class _StageFailed(Exception):
    def __init__(self, stage: WorkflowStage, detail: str):
        super().__init__(f"{stage.value}: {detail}")
        self.stage = stage
        self.detail = detail


class WorkflowOrchestrator:
    """Runs NewSession → ConfigureMode → Upload → VerifyAttachment → SendPrompt
    → AwaitResponse → ExtractResult → Cleanup against one Session.

    Any stage failure before extraction restarts the whole attempt. Extraction
    gets a short regenerate loop of its own first. Two upload failures in a
    row force one page reload before the next attempt. Running out of
    attempts is a result value, not an exception; ``TransportError`` is the
    only thing that escapes ``run``.

    Claims the Session with an ownership token on construction and gives it
    back on ``close()``.
    """

    def __init__(
        self,
        session: Session,
        executor: Optional[ActionExecutor] = None,
        watcher: Optional[ResponseWatcher] = None,
        diagnostics: Optional[PageDiagnostics] = None,
        settings: Optional[AutomationSettings] = None,
        scripts: Optional[ScriptTable] = None,
        owner: str = "workflow",
    ):
        self._settings = settings or AutomationSettings()
        scripts = scripts or ScriptTable()
        self._session = session
        self._executor = executor or ActionExecutor(session, self._settings, scripts)
        self._watcher = watcher or ResponseWatcher(session, self._settings, scripts)
        self._diagnostics = diagnostics or PageDiagnostics(self._settings, scripts)

        self._token = session.ownership.acquire(owner)
        if self._token is None:
            raise AutomationBusyError(f"Session {session.id} is owned by '{session.ownership.owner}'")

    def close(self) -> None:
        if self._token is not None:
            self._session.ownership.release(self._token)
            self._token = None

    async def __aenter__(self) -> WorkflowOrchestrator:
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

    async def run(self, request: WorkflowRequest) -> WorkflowResult:
        if not self._session.ownership.holds(self._token):
            raise AutomationBusyError("Workflow no longer owns the session.")
        if not self._session.connected:
            logger.error("[WORKFLOW] Session is not connected.")
            return WorkflowResult(success=False, failure=WorkflowFailure.NOT_CONNECTED)

        retry = RetryState(
            max_attempts=self._settings.max_attempts,
            fallback_from_attempt=self._settings.fallback_from_attempt,
        )
        history: list[AttemptRecord] = []
        upload_failures = 0
        best_text = ""

        while retry.advance():
            if retry.attempt > 1:
                logger.info(f"[WORKFLOW] Waiting {self._settings.retry_delay}s before the next attempt...")
                await asyncio.sleep(self._settings.retry_delay)

            prompt = retry.select_prompt(request)
            prompt_kind = "fallback" if retry.use_fallback and request.fallback_prompt else "primary"
            logger.info(f"[WORKFLOW] Attempt {retry.attempt}/{retry.max_attempts} ({prompt_kind} prompt)")

            outcome = await self._attempt(request, prompt)
            record = AttemptRecord(
                attempt=retry.attempt,
                prompt_kind=prompt_kind,
                failed_stage=outcome.stage,
                detail=outcome.detail,
            )
            history.append(record)

            if outcome.success:
                logger.info(f"[WORKFLOW] Succeeded on attempt {retry.attempt}")
                return WorkflowResult(
                    success=True,
                    text=outcome.text,
                    image_base64=outcome.image_base64,
                    outcome=outcome.wait_outcome,
                    attempts=retry.attempt,
                    history=history,
                )

            best_text = outcome.text or best_text
            logger.warning(f"[WORKFLOW] Attempt {retry.attempt} failed at {outcome.stage.value}: {outcome.detail}")

            upload_failures = upload_failures + 1 if outcome.stage in UPLOAD_STAGES else 0
            if upload_failures >= self._settings.upload_failures_before_reset and not retry.exhausted:
                logger.warning(f"[WORKFLOW] {upload_failures} upload failures in a row, reloading page")
                reloaded = await self._executor.reload()
                if reloaded.ok:
                    record.page_reset = True
                else:
                    logger.error(f"[WORKFLOW] Page reload failed ({reloaded.status}), next attempt runs on the same page")
                upload_failures = 0

        logger.error(f"[WORKFLOW] All {retry.max_attempts} attempts failed.")
        await self._return_home()
        last = history[-1] if history else None
        return WorkflowResult(
            success=False,
            text=best_text,
            attempts=retry.attempt,
            failure=WorkflowFailure.WORKFLOW_EXHAUSTED,
            failed_stage=last.failed_stage if last else None,
            history=history,
        )

    async def _attempt(self, request: WorkflowRequest, prompt: str) -> _AttemptOutcome:
        partial = ""
        try:
            self._require(WorkflowStage.NEW_SESSION, await self._executor.start_new_chat())

            if request.model:
                self._require(WorkflowStage.CONFIGURE_MODE, await self._executor.select_model(request.model))
            if request.image_generation:
                self._require(WorkflowStage.CONFIGURE_MODE, await self._executor.enable_image_generation())

            if request.file_path:
                self._require(WorkflowStage.UPLOAD, await self._executor.upload_file(request.file_path))
                self._require(WorkflowStage.VERIFY_ATTACHMENT, await self._executor.wait_for_attachment())

            baseline = await self._watcher.response_count()
            self._require(WorkflowStage.SEND_PROMPT, await self._executor.send_message(prompt))

            wait = await self._watcher.wait_for_completion(request.response_timeout, baseline)
            partial = wait.text
            self._check_wait(WorkflowStage.AWAIT_RESPONSE, request, wait)

            text, image = await self._extract_with_regenerate(request, prompt, wait)
        except _StageFailed as failed:
            return _AttemptOutcome(success=False, stage=failed.stage, detail=failed.detail, text=partial)

        if request.cleanup:
            deleted = await self._executor.delete_current_chat()
            if not deleted.ok:
                logger.warning(f"[WORKFLOW] Cleanup failed ({deleted.status}), keeping result")

        return _AttemptOutcome(success=True, text=text, image_base64=image, wait_outcome=wait.outcome)

    @staticmethod
    def _require(stage: WorkflowStage, result: ActionResult) -> ActionResult:
        if not result.ok:
            raise _StageFailed(stage, result.status or (result.error.value if result.error else "failed"))
        return result

    @staticmethod
    def _check_wait(stage: WorkflowStage, request: WorkflowRequest, wait: WaitResult) -> None:
        if wait.outcome == WaitOutcome.FAILED:
            raise _StageFailed(stage, f"generation failed: {wait.detail}")
        if wait.outcome == WaitOutcome.TIMEOUT:
            if request.accept_partial and wait.text:
                logger.warning(f"[WORKFLOW] Timed out, accepting {len(wait.text)} chars of partial text")
                return
            raise _StageFailed(stage, "timed out waiting for response")

    async def _extract_with_regenerate(
        self, request: WorkflowRequest, prompt: str, wait: WaitResult
    ) -> tuple[str, Optional[str]]:
        attempts = self._settings.extract_attempts
        for extract_try in range(1, attempts + 1):
            extracted = await self._extract(request, wait)
            if extracted is not None:
                return extracted
            if extract_try == attempts:
                break

            logger.warning(f"[WORKFLOW] Nothing to extract, regenerating ({extract_try}/{attempts - 1})")
            baseline = await self._watcher.response_count()
            resent = await self._executor.send_message(prompt)
            if not resent.ok:
                raise _StageFailed(WorkflowStage.EXTRACT_RESULT, f"regenerate send failed: {resent.status}")
            wait = await self._watcher.wait_for_completion(request.response_timeout, baseline)
            self._check_wait(WorkflowStage.EXTRACT_RESULT, request, wait)

        raise _StageFailed(WorkflowStage.EXTRACT_RESULT, f"no result after {attempts} extraction attempts")

    async def _extract(self, request: WorkflowRequest, wait: WaitResult) -> Optional[tuple[str, Optional[str]]]:
        if request.expect_image or wait.outcome == WaitOutcome.IMAGE:
            image = await self._executor.extract_image()
            if image.ok and image.payload:
                return wait.text, image.payload
            logger.warning(f"[EXTRACT] Image extraction failed: {image.status}")
            if request.expect_image:
                return None
        if wait.text.strip():
            return wait.text, None
        return None

    async def _return_home(self) -> None:
        """Best effort: leave the page on the target so the next caller starts clean."""
        result = await self._executor.navigate(self._settings.target_url)
        if not result.ok:
            logger.warning(f"[WORKFLOW] Could not return to the target page: {result.status}")
            return
        diagnosis = await self._diagnostics.diagnose(self._session)
        logger.info(f"[WORKFLOW] Page after reset: {diagnosis.status.value}")
