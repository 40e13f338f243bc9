"""Remote browser connection: attach over CDP, launch, health checks, session lifecycle."""

from __future__ import annotations

import asyncio
import logging
import sys
import uuid
from typing import Any, Awaitable, Callable, Optional, TypeVar

from camoufox.async_api import AsyncCamoufox
from playwright.async_api import Browser, Page, async_playwright

from ..models.settings import AutomationSettings
from .errors import TransportError, is_transport_error
from .gate import OwnershipRegistry
from .scripts import ScriptTable

T = TypeVar("T")

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class Session:
    """Exclusive handle on one remote browser connection and its target page.

    A Session is never repaired: once it is marked disconnected every remote
    call raises ``TransportError`` and the owner must obtain a new one.
    """

    def __init__(
        self,
        browser: Browser,
        page: Page,
        on_disconnect: Optional[Callable[[Session, str], Any]] = None,
        health_check_timeout: float = 3.0,
    ):
        self.id = uuid.uuid4().hex[:8]
        self.browser = browser
        self.page = page
        self.ownership = OwnershipRegistry()
        self._on_disconnect = on_disconnect
        self._health_check_timeout = health_check_timeout
        self._connected = True
        self._disconnect_reason = ""

        browser.on("disconnected", self._on_transport_closed)
        page.on("close", self._on_transport_closed)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def disconnect_reason(self) -> str:
        return self._disconnect_reason

    @property
    def url(self) -> str:
        return self.page.url if self._connected else ""

    def _on_transport_closed(self, *_):
        self.mark_disconnected("browser or page closed")

    def mark_disconnected(self, reason: str) -> None:
        """Latch the session as dead. The disconnect callback fires once."""
        if not self._connected:
            return
        self._connected = False
        self._disconnect_reason = reason
        logger.warning(f"[SESSION {self.id}] Disconnected: {reason}")
        if self._on_disconnect is not None:
            self._on_disconnect(self, reason)

    async def call(self, operation: Callable[[Page], Awaitable[T]], timeout: Optional[float] = None) -> T:
        """Run a page-level operation.

        Transport failures invalidate the session and raise ``TransportError``;
        anything else (script errors, timeouts) is left for the caller to
        classify.
        """
        if not self._connected:
            raise TransportError(f"Session {self.id} is disconnected: {self._disconnect_reason}")
        try:
            if timeout is None:
                return await operation(self.page)
            return await asyncio.wait_for(operation(self.page), timeout=timeout)
        except TransportError:
            raise
        except Exception as e:
            if is_transport_error(e):
                self.mark_disconnected(str(e))
                raise TransportError(f"Remote call failed: {e}") from e
            raise

    async def evaluate(self, script: str, arg: Any = None, timeout: Optional[float] = None) -> Any:
        """Run a script in the page and return its value."""
        return await self.call(lambda page: page.evaluate(script, arg), timeout=timeout)

    async def check_connection(self) -> bool:
        """Actively probe the remote side with a trivial evaluation.

        Catches zombie sessions whose transport still looks open but whose
        renderer no longer answers.
        """
        if not self._connected:
            return False
        try:
            result = await asyncio.wait_for(
                self.page.evaluate("() => 1", None), timeout=self._health_check_timeout
            )
        except asyncio.TimeoutError:
            self.mark_disconnected(f"no answer within {self._health_check_timeout}s")
            return False
        except Exception as e:
            self.mark_disconnected(f"health check failed: {e}")
            return False
        return result == 1

    async def cookies(self, urls: Optional[list[str]] = None) -> list[dict]:
        return await self.call(lambda page: page.context.cookies(urls))

    async def set_cookies(self, cookies: list[dict]) -> None:
        if not cookies:
            return
        logger.info(f"[SESSION {self.id}] Injecting {len(cookies)} cookies")
        await self.call(lambda page: page.context.add_cookies(cookies))

    async def close(self) -> None:
        """Detach from the remote browser. For CDP attachments the browser keeps running."""
        was_connected = self._connected
        self._connected = False
        self._disconnect_reason = self._disconnect_reason or "closed"
        self._on_disconnect = None
        if not was_connected:
            return
        try:
            await self.browser.close()
        except Exception as e:
            logger.warning(f"[SESSION {self.id}] Error while closing: {e}")


class ConnectionManager:
    """Acquires Sessions and watches their health.

    Holds at most one live Session. Connecting again drops the previous one.
    """

    def __init__(
        self,
        settings: Optional[AutomationSettings] = None,
        scripts: Optional[ScriptTable] = None,
        on_disconnect: Optional[Callable[[str], Any]] = None,
    ):
        self._settings = settings or AutomationSettings()
        self._scripts = scripts or ScriptTable()
        self._on_disconnect = on_disconnect
        self._playwright = None
        self._camoufox = None
        self._session: Optional[Session] = None
        self._disconnect_latched = False

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.connected

    # ── Acquisition ──────────────────────────────────────────────────────────

    async def connect(self, target: Optional[str] = None) -> Optional[Session]:
        """Attach to a browser exposing a remote-debugging endpoint.

        Bounded attempts, fixed per-attempt timeout, linear backoff between
        attempts. Returns None after the last failure; never raises.
        """
        endpoint = target or self._settings.cdp_endpoint
        attempts = self._settings.connect_attempts
        await self._drop_session()

        for attempt in range(1, attempts + 1):
            browser = None
            session = None
            try:
                logger.info(f"[CONNECT] Attempt {attempt}/{attempts} -> {endpoint}")
                browser = await asyncio.wait_for(
                    self._connect_browser(endpoint), timeout=self._settings.connect_timeout
                )
                page = await self._select_page(browser)
                session = self._adopt(browser, page)
                await self._hide_automation(session)
                logger.info(f"[CONNECT] Connected (session {session.id}), page: {page.url}")
                return session
            except asyncio.TimeoutError:
                logger.warning(
                    f"[CONNECT] Attempt {attempt}/{attempts} timed out after "
                    f"{self._settings.connect_timeout}s"
                )
            except Exception as e:
                logger.warning(f"[CONNECT] Attempt {attempt}/{attempts} failed: {e}")
                if session is not None and self._session is session:
                    self._session = None
                if browser is not None:
                    await self._close_quietly(browser)

            if attempt < attempts:
                await asyncio.sleep(self._settings.connect_retry_delay * attempt)

        logger.error(f"[CONNECT] Giving up on {endpoint} after {attempts} attempts.")
        return None

    async def attach_to_existing(self, browser: Browser) -> Session:
        """Adopt an already running browser. Raises TransportError if it does not answer."""
        logger.info("[CONNECT] Attaching to an existing browser instance...")
        await self._drop_session()
        try:
            page = await self._select_page(browser)
        except Exception as e:
            raise TransportError(f"Could not reach a page on the given browser: {e}") from e

        session = self._adopt(browser, page)
        if not await session.check_connection():
            self._session = None
            raise TransportError(f"Browser did not answer the liveness check: {session.disconnect_reason}")
        await self._hide_automation(session)
        logger.info(f"[CONNECT] Attached (session {session.id}), page: {page.url}")
        return session

    async def launch(self, headless: Optional[bool] = None) -> Optional[Session]:
        """Launch a managed Camoufox browser and attach to it."""
        use_headless = headless if headless is not None else self._settings.headless
        await self._drop_session()
        try:
            logger.info(f"[LAUNCH] Launching Camoufox (headless={use_headless})...")
            self._camoufox = AsyncCamoufox(
                headless=use_headless,
                humanize=True,
                i_know_what_im_doing=True,
                config={"forceScopeAccess": True},
                disable_coop=True,
            )
            browser = await self._camoufox.__aenter__()
            return await self.attach_to_existing(browser)
        except Exception as e:
            logger.error(f"[LAUNCH] Failed to launch browser: {e}")
            await self._stop_camoufox()
            return None

    # ── Health ───────────────────────────────────────────────────────────────

    async def check_connection(self) -> bool:
        if self._session is None:
            return False
        return await self._session.check_connection()

    async def ensure_connection(self) -> bool:
        """Active health check with a latched failure.

        After the first failure this keeps answering False without touching
        the remote side again, and the disconnect notification is not
        repeated. Only a new ``connect``/``attach`` clears the latch.
        """
        if self._session is None or self._disconnect_latched:
            return False
        if await self._session.check_connection():
            return True
        self._latch(self._session.disconnect_reason or "health check failed")
        return False

    def _latch(self, reason: str) -> None:
        if self._disconnect_latched:
            return
        self._disconnect_latched = True
        logger.error(f"[CONNECT] Connection lost: {reason}. A new session is required.")
        if self._on_disconnect is not None:
            self._on_disconnect(reason)

    def _on_session_lost(self, session: Session, reason: str) -> None:
        if session is self._session:
            self._latch(reason)

    # ── Internals ────────────────────────────────────────────────────────────

    async def _connect_browser(self, endpoint: str) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.connect_over_cdp(endpoint)

    async def _select_page(self, browser: Browser) -> Page:
        """Prefer a tab already on the target, then any open tab, then a new one."""
        host = self._settings.target_host
        pages = [page for context in browser.contexts for page in context.pages]
        for page in pages:
            if host in (page.url or ""):
                return page

        if pages:
            logger.info("[CONNECT] Reusing an existing tab for the target page...")
            page = pages[0]
        else:
            logger.info("[CONNECT] No open tab, creating one...")
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = await context.new_page()
        await self._goto_target(page)
        return page

    async def _goto_target(self, page: Page) -> None:
        timeout_ms = self._settings.navigation_timeout * 1000
        try:
            await page.goto(self._settings.target_url, wait_until="domcontentloaded", timeout=timeout_ms)
        except Exception as e:
            logger.warning(f"[CONNECT] Navigation slow, retrying with commit: {e}")
            await page.goto(self._settings.target_url, wait_until="commit", timeout=timeout_ms * 2)

    def _adopt(self, browser: Browser, page: Page) -> Session:
        session = Session(
            browser,
            page,
            on_disconnect=self._on_session_lost,
            health_check_timeout=self._settings.health_check_timeout,
        )
        self._session = session
        self._disconnect_latched = False
        return session

    async def _hide_automation(self, session: Session) -> None:
        try:
            await session.evaluate(self._scripts.action("hide_automation"), timeout=self._settings.action_timeout)
        except TransportError:
            raise
        except Exception as e:
            logger.warning(f"[CONNECT] Could not hide automation markers: {e}")

    async def _drop_session(self) -> None:
        if self._session is None:
            return
        old, self._session = self._session, None
        await old.close()

    async def _close_quietly(self, browser: Browser) -> None:
        try:
            await browser.close()
        except Exception as e:
            logger.debug(f"[CONNECT] Ignoring close error: {e}")

    async def _stop_camoufox(self) -> None:
        try:
            if self._camoufox:
                await self._camoufox.__aexit__(None, None, None)
        except Exception as e:
            logger.warning(f"Error closing camoufox: {e}")
        finally:
            self._camoufox = None

    async def close(self) -> None:
        """Drop the session and release the transport."""
        logger.info("Closing connection manager...")
        await self._drop_session()
        await self._stop_camoufox()
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            finally:
                self._playwright = None
        logger.info("Connection manager closed.")
