"""Single remote actions on the target page, with fallbacks."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..models.actions import ActionError, ActionResult, UploadStrategy
from ..models.session import RecoveryKind, RecoveryOutcome
from ..models.settings import AutomationSettings
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

_RECOVERY_KINDS = {
    "clicked_retry": RecoveryKind.CLICKED_RETRY,
    "dismissed_dialog": RecoveryKind.DISMISSED_DIALOG,
    "rate_limited": RecoveryKind.RATE_LIMITED,
    "session_expired": RecoveryKind.SESSION_EXPIRED,
}


class _StrategyMiss(Exception):
    """An upload strategy gave up early with a soft failure."""

    def __init__(self, result: ActionResult):
        super().__init__(result.status)
        self.result = result


class ActionExecutor:
    """Runs short, named scripts against one Session.

    Soft failures (missing element, disabled button, script error, timeout)
    come back as ``ActionResult(ok=False)``. Only ``TransportError`` is raised.
    None of these actions is idempotent; do not retry them blindly.
    """

    def __init__(
        self,
        session: Session,
        settings: Optional[AutomationSettings] = None,
        scripts: Optional[ScriptTable] = None,
    ):
        self._session = session
        self._settings = settings or AutomationSettings()
        self._scripts = scripts or ScriptTable()

    @property
    def session(self) -> Session:
        return self._session

    async def _run(self, name: str, arg: Any = None, timeout: Optional[float] = None) -> ActionResult:
        limit = timeout or self._settings.action_timeout
        try:
            value = await self._session.evaluate(self._scripts.action(name), arg, timeout=limit)
        except TransportError:
            raise
        except (asyncio.TimeoutError, PlaywrightTimeoutError):
            logger.warning(f"[ACTION] {name} timed out after {limit}s")
            return ActionResult.failure(ActionError.TIMEOUT, status=f"{name} timed out")
        except PlaywrightError as e:
            logger.warning(f"[ACTION] {name} script error: {e}")
            return ActionResult.failure(ActionError.SCRIPT_ERROR, status=str(e)[:200])
        return ActionResult.from_script(value)

    async def _probe(self, name: str, arg: Any = None) -> Any:
        """Read-only probe. Non-transport failures read as None."""
        try:
            return await self._session.evaluate(
                self._scripts.probe(name), arg, timeout=self._settings.action_timeout
            )
        except TransportError:
            raise
        except (asyncio.TimeoutError, PlaywrightError) as e:
            logger.debug(f"[ACTION] probe {name} missed: {e}")
            return None

    async def _page_action(self, label: str, operation) -> ActionResult:
        try:
            await self._session.call(operation)
        except TransportError:
            raise
        except (asyncio.TimeoutError, PlaywrightTimeoutError):
            return ActionResult.failure(ActionError.TIMEOUT, status=f"{label} timed out")
        except PlaywrightError as e:
            logger.warning(f"[ACTION] {label} failed: {e}")
            return ActionResult.failure(ActionError.FAILED, status=str(e)[:200])
        return ActionResult.success(status=label)

    async def _hide_automation(self) -> None:
        result = await self._run("hide_automation")
        if not result.ok:
            logger.debug(f"[ACTION] hide_automation: {result.status}")

    # ── Navigation ───────────────────────────────────────────────────────────

    async def navigate(self, url: Optional[str] = None) -> ActionResult:
        target = url or self._settings.target_url
        timeout_ms = self._settings.navigation_timeout * 1000

        async def goto(page: Page):
            try:
                await page.goto(target, wait_until="domcontentloaded", timeout=timeout_ms)
            except PlaywrightTimeoutError as e:
                logger.warning(f"[NAVIGATE] Slow load, retrying with commit: {e}")
                await page.goto(target, wait_until="commit", timeout=timeout_ms * 2)

        logger.info(f"[NAVIGATE] {target}")
        result = await self._page_action("navigated", goto)
        if result.ok:
            await self._hide_automation()
        return result

    async def reload(self) -> ActionResult:
        """Full page reset."""
        timeout_ms = self._settings.navigation_timeout * 1000
        logger.info("[NAVIGATE] Reloading page...")
        result = await self._page_action(
            "reloaded", lambda page: page.reload(wait_until="domcontentloaded", timeout=timeout_ms)
        )
        if result.ok:
            await self._hide_automation()
        return result

    async def start_new_chat(self) -> ActionResult:
        """Open a fresh conversation and wait for the input box."""
        navigated = await self.navigate(self._settings.target_url)
        if not navigated.ok:
            return navigated
        ready = await poll_until(
            lambda: self._probe("input_ready"),
            interval=self._settings.poll_interval,
            timeout=self._settings.action_timeout,
        )
        if not ready.satisfied:
            return ActionResult.failure(ActionError.NOT_FOUND, status="input_not_ready")
        return ActionResult.success(status="new_chat")

    # ── Input ────────────────────────────────────────────────────────────────

    async def focus_and_clear(self) -> ActionResult:
        return await self._run("focus_and_clear")

    async def inject_text(self, text: str) -> ActionResult:
        return await self._run("inject_text", text)

    async def click_send(self) -> ActionResult:
        return await self._run("click_send")

    async def click_stop(self) -> ActionResult:
        return await self._run("click_stop")

    async def press_key(self, key: str) -> ActionResult:
        return await self._page_action(f"pressed {key}", lambda page: page.keyboard.press(key))

    async def send_message(self, text: str) -> ActionResult:
        """Focus, clear, type, then click send once it is enabled (Enter as fallback)."""
        cleared = await self.focus_and_clear()
        if not cleared.ok:
            logger.warning(f"[SEND] Input not available: {cleared.status}")
            return cleared
        typed = await self.inject_text(text)
        if not typed.ok:
            logger.warning(f"[SEND] Text injection failed: {typed.status}")
            return typed
        await asyncio.sleep(self._settings.settle_delay)

        clicked = await poll_until(
            self.click_send,
            lambda result: result.ok,
            interval=self._settings.poll_interval,
            timeout=self._settings.send_button_timeout,
        )
        if clicked.satisfied:
            logger.info(f"[SEND] Sent {len(text)} chars")
            return ActionResult.success(status="sent")

        logger.warning(f"[SEND] Send button unavailable ({clicked.value.status}), falling back to Enter")
        pressed = await self.press_key("Enter")
        if pressed.ok:
            return ActionResult.success(status="sent_with_enter")
        return clicked.value

    # ── Mode ─────────────────────────────────────────────────────────────────

    async def select_model(self, name: str) -> ActionResult:
        """Switch the model picker, e.g. to ``"pro"`` or ``"flash"``."""
        result = await self._run("select_model", name.lower())
        logger.info(f"[MODE] select_model({name}): {result.status}")
        return result

    async def enable_image_generation(self) -> ActionResult:
        result = await self._run("enable_image_generation")
        logger.info(f"[MODE] image generation: {result.status}")
        return result

    # ── Upload ───────────────────────────────────────────────────────────────

    async def open_upload_menu(self) -> ActionResult:
        return await self._run("open_upload_menu")

    async def wait_for_attachment(self, timeout: Optional[float] = None) -> ActionResult:
        """Poll until an attachment indicator shows in the input area."""
        limit = timeout if timeout is not None else self._settings.attachment_timeout
        found = await poll_until(
            lambda: self._probe("attachment_present"),
            interval=self._settings.poll_interval,
            timeout=limit,
        )
        if found.satisfied:
            return ActionResult.success(status="attached")
        return ActionResult.failure(ActionError.TIMEOUT, status="no_attachment")

    async def upload_file(self, path: str) -> ActionResult:
        """Attach a local file, demoting through three strategies.

        1. intercept the native file chooser opened by the upload button;
        2. set files directly on an ``input[type=file]``;
        3. inject the bytes through a synthetic drop event.

        Each strategy has its own timeout. The first that succeeds wins and is
        recorded in ``ActionResult.strategy``.
        """
        file = Path(path)
        if not file.is_file():
            logger.error(f"[UPLOAD] File not found: {file}")
            return ActionResult.failure(ActionError.FILE_NOT_FOUND, status=str(file))

        strategies = [
            (UploadStrategy.FILE_CHOOSER, self._upload_via_file_chooser),
            (UploadStrategy.FILE_INPUT, self._upload_via_file_input),
            (UploadStrategy.SCRIPT_INJECTION, self._upload_via_script),
        ]
        limit = self._settings.upload_strategy_timeout
        last: Optional[ActionResult] = None

        for strategy, attempt in strategies:
            logger.info(f"[UPLOAD] Trying {strategy.value} for {file.name}...")
            try:
                result = await asyncio.wait_for(attempt(file), timeout=limit)
            except TransportError:
                raise
            except _StrategyMiss as miss:
                result = miss.result
            except (asyncio.TimeoutError, PlaywrightTimeoutError):
                result = ActionResult.failure(ActionError.TIMEOUT, status=f"{strategy.value} timed out")
            except PlaywrightError as e:
                result = ActionResult.failure(ActionError.SCRIPT_ERROR, status=str(e)[:200])

            if result.ok:
                logger.info(f"[UPLOAD] {file.name} attached via {strategy.value}")
                return result.model_copy(update={"strategy": strategy})
            logger.warning(f"[UPLOAD] {strategy.value} failed: {result.status}")
            last = result

        logger.error(f"[UPLOAD] All strategies failed for {file.name}")
        return ActionResult.failure(last.error or ActionError.FAILED, status="all_strategies_failed")

    async def _upload_via_file_chooser(self, file: Path) -> ActionResult:
        timeout_ms = self._settings.upload_strategy_timeout * 1000

        async def intercept(page: Page) -> ActionResult:
            # The listener must exist before the click that opens the chooser.
            async with page.expect_file_chooser(timeout=timeout_ms) as chooser_info:
                opened = await self.open_upload_menu()
                if not opened.ok:
                    raise _StrategyMiss(opened)
            chooser = await chooser_info.value
            await chooser.set_files(str(file))
            return ActionResult.success(status="file_chooser")

        return await self._session.call(intercept)

    async def _upload_via_file_input(self, file: Path) -> ActionResult:
        selector = "input[type='file']"
        inputs = await self._session.call(lambda page: page.query_selector_all(selector))
        if not inputs:
            await self.open_upload_menu()
            inputs = await self._session.call(lambda page: page.query_selector_all(selector))
        if not inputs:
            raise _StrategyMiss(ActionResult.failure(ActionError.NOT_FOUND, status="no_file_input"))

        await self._session.call(lambda page: inputs[-1].set_input_files(str(file)))
        return await self._confirm_attachment("file_input")

    async def _upload_via_script(self, file: Path) -> ActionResult:
        mime = mimetypes.guess_type(file.name)[0] or "application/octet-stream"
        payload = {
            "data": base64.b64encode(file.read_bytes()).decode("ascii"),
            "name": file.name,
            "mime": mime,
        }
        dropped = await self._run("drop_file", payload, timeout=self._settings.upload_strategy_timeout)
        if not dropped.ok:
            return dropped
        return await self._confirm_attachment(dropped.status)

    async def _confirm_attachment(self, status: str) -> ActionResult:
        confirmed = await self.wait_for_attachment(timeout=self._settings.upload_strategy_timeout)
        if not confirmed.ok:
            return ActionResult.failure(ActionError.NOT_FOUND, status=f"{status}: no attachment indicator")
        return ActionResult.success(status=status)

    # ── Results ──────────────────────────────────────────────────────────────

    async def extract_image(self) -> ActionResult:
        """Fetch the last generated image. ``payload`` is the base64 body without the data-URL prefix."""
        result = await self._run("extract_image", timeout=self._settings.action_timeout * 3)
        if not result.ok or not result.payload:
            return result
        payload = result.payload
        if payload.startswith("data:") and "," in payload:
            payload = payload.split(",", 1)[1]
        logger.info(f"[EXTRACT] Image extracted ({len(payload)} base64 chars)")
        return result.model_copy(update={"payload": payload})

    async def delete_current_chat(self) -> ActionResult:
        result = await self._run("delete_chat")
        logger.info(f"[CLEANUP] delete chat: {result.status}")
        return result

    async def recover_page(self) -> RecoveryOutcome:
        """Try to get the page back to a usable state.

        Dismisses dialogs or clicks a retry affordance when one is shown,
        reloads when the input box is gone, and reports rate limiting or an
        expired session without acting on them.
        """
        result = await self._run(
            "recover_page",
            {
                "rateLimit": self._scripts.rate_limit_phrases,
                "expired": self._scripts.session_expired_phrases,
            },
        )
        kind = _RECOVERY_KINDS.get(result.status)
        if kind is not None:
            logger.info(f"[RECOVER] {kind.value}")
            return RecoveryOutcome(kind=kind, detail=result.status)

        if result.status == "needs_reload":
            reloaded = await self.reload()
            if reloaded.ok:
                logger.info("[RECOVER] Page reloaded")
                return RecoveryOutcome(kind=RecoveryKind.RELOADED, detail="input missing")
            return RecoveryOutcome(kind=RecoveryKind.NONE, detail=f"reload failed: {reloaded.status}")

        return RecoveryOutcome(kind=RecoveryKind.NONE, detail=result.status)
