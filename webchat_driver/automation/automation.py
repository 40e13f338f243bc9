"""Caller-facing facade over connection, actions, watching and workflows."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from playwright.async_api import Browser

from ..models.actions import ActionResult
from ..models.session import PageDiagnosis, RecoveryOutcome, SessionStatus
from ..models.settings import AutomationSettings
from ..models.workflow import WaitOutcome, WaitResult, WorkflowFailure, WorkflowRequest, WorkflowResult
from .actions import ActionExecutor
from .browser import ConnectionManager, Session
from .diagnostics import PageDiagnostics
from .errors import AutomationBusyError, TransportError
from .events import LogCallback, LogEventStream
from .gate import ConcurrencyGate
from .scripts import ScriptTable, load_script_table
from .watcher import ResponseWatcher
from .workflow import WorkflowOrchestrator

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class WebChatAutomation:
    """One automated chat page.

    ``generate_content`` and ``run_workflow`` share a single-slot gate: a
    second call while one is running fails at once with
    ``AutomationBusyError``. Diagnosis, health checks and ``stop_generation``
    never wait on the gate.
    """

    def __init__(
        self,
        settings: Optional[AutomationSettings] = None,
        scripts: Optional[ScriptTable] = None,
        on_disconnect: Optional[Callable[[str], Any]] = None,
    ):
        self.settings = settings or AutomationSettings()
        self.scripts = scripts or load_script_table()
        self.events = LogEventStream().attach()
        self.diagnostics = PageDiagnostics(self.settings, self.scripts)
        self.last_generation_time: Optional[str] = None

        self._on_disconnect = on_disconnect
        self._gate = ConcurrencyGate("generation")
        self._connections = ConnectionManager(self.settings, self.scripts, on_disconnect=self._handle_disconnect)
        self._executor: Optional[ActionExecutor] = None
        self._watcher: Optional[ResponseWatcher] = None

    # ── Connection ───────────────────────────────────────────────────────────

    @property
    def session(self) -> Optional[Session]:
        return self._connections.session

    @property
    def is_connected(self) -> bool:
        return self._connections.is_connected

    @property
    def busy(self) -> bool:
        return self._gate.busy

    def _bind(self, session: Optional[Session]) -> bool:
        if session is None:
            self._executor = None
            self._watcher = None
            return False
        self._executor = ActionExecutor(session, self.settings, self.scripts)
        self._watcher = ResponseWatcher(session, self.settings, self.scripts)
        return True

    def _handle_disconnect(self, reason: str) -> None:
        logger.error(f"[CONNECT] Browser connection lost: {reason}")
        if self._on_disconnect is not None:
            self._on_disconnect(reason)

    async def connect(self, target: Optional[str] = None) -> bool:
        """Attach over the remote-debugging endpoint. False if every attempt failed."""
        return self._bind(await self._connections.connect(target))

    async def launch(self, headless: Optional[bool] = None) -> bool:
        return self._bind(await self._connections.launch(headless))

    async def attach(self, browser: Browser) -> None:
        """Adopt an already running browser. Raises ``TransportError`` if it is dead."""
        self._bind(await self._connections.attach_to_existing(browser))

    async def ensure_connection(self) -> bool:
        return await self._connections.ensure_connection()

    def _require_session(self) -> Session:
        session = self._connections.session
        if session is None or not session.connected:
            raise TransportError("Not connected to a browser. Call connect() first.")
        return session

    def _require_free_session(self) -> Session:
        session = self._require_session()
        if session.ownership.is_owned:
            raise AutomationBusyError(f"Session is in use by '{session.ownership.owner}'.")
        return session

    # ── Generation (gated) ───────────────────────────────────────────────────

    async def generate_content(self, prompt: str, timeout: Optional[float] = None) -> WaitResult:
        """Send ``prompt`` on the current page and wait for the answer."""
        async with self._gate.hold("generate_content"):
            session = self._require_free_session()
            token = session.ownership.acquire("generate_content")
            try:
                baseline = await self._watcher.response_count()
                sent = await self._executor.send_message(prompt)
                if not sent.ok:
                    return WaitResult(outcome=WaitOutcome.FAILED, detail=f"send failed: {sent.status}")
                result = await self._watcher.wait_for_completion(timeout, baseline)
            finally:
                session.ownership.release(token)
            self.last_generation_time = datetime.now(timezone.utc).isoformat()
            return result

    async def run_workflow(self, request: WorkflowRequest) -> WorkflowResult:
        async with self._gate.hold("run_workflow"):
            session = self._connections.session
            if session is None or not session.connected:
                logger.error("[WORKFLOW] Not connected.")
                return WorkflowResult(success=False, failure=WorkflowFailure.NOT_CONNECTED)

            orchestrator = WorkflowOrchestrator(
                session,
                executor=self._executor,
                watcher=self._watcher,
                diagnostics=self.diagnostics,
                settings=self.settings,
                scripts=self.scripts,
            )
            try:
                result = await orchestrator.run(request)
            finally:
                orchestrator.close()
            self.last_generation_time = datetime.now(timezone.utc).isoformat()
            return result

    # ── Single steps ─────────────────────────────────────────────────────────

    async def send_message(self, text: str) -> ActionResult:
        self._require_free_session()
        return await self._executor.send_message(text)

    async def wait_for_response(
        self, timeout: Optional[float] = None, baseline_count: Optional[int] = None
    ) -> WaitResult:
        self._require_free_session()
        return await self._watcher.wait_for_completion(timeout, baseline_count)

    async def upload_file(self, path: str) -> ActionResult:
        self._require_free_session()
        return await self._executor.upload_file(path)

    async def recover(self) -> RecoveryOutcome:
        self._require_free_session()
        return await self._executor.recover_page()

    async def stop_generation(self) -> ActionResult:
        self._require_session()
        return await self._executor.click_stop()

    async def diagnose(self) -> PageDiagnosis:
        return await self.diagnostics.diagnose(self._connections.session)

    async def cookies(self) -> list[dict]:
        return await self._require_session().cookies()

    async def set_cookies(self, cookies: list[dict]) -> None:
        await self._require_session().set_cookies(cookies)

    # ── Observability ────────────────────────────────────────────────────────

    def subscribe_logs(self, callback: LogCallback) -> Callable[[], None]:
        return self.events.subscribe(callback)

    def status(self) -> SessionStatus:
        session = self._connections.session
        if session is None:
            state = "not_running"
        elif not session.connected:
            state = "disconnected"
        elif self._gate.busy:
            state = "busy"
        else:
            state = "connected"
        return SessionStatus(
            is_connected=self.is_connected,
            state=state,
            owner=session.ownership.owner if session else None,
            current_url=session.url if session else "",
            busy=self._gate.busy,
            last_generation_time=self.last_generation_time,
            message=session.disconnect_reason if session and not session.connected else "",
        )

    async def disconnect(self) -> None:
        """Drop the browser connection. A later connect() starts over."""
        await self._connections.close()
        self._bind(None)

    async def close(self) -> None:
        await self.disconnect()
        self.events.detach()
