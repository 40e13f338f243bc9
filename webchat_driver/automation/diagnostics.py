"""Page-state diagnosis from independent probes."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Iterable, Optional
from urllib.parse import urlparse

from ..models.session import PageDiagnosis, PageStatus
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


class PageDiagnostics:
    """Classifies the remote page into one ``PageStatus``.

    Every call reads the page again. Nothing here raises: failures to read
    the page are themselves a diagnosis.
    """

    def __init__(self, settings: Optional[AutomationSettings] = None, scripts: Optional[ScriptTable] = None):
        self._settings = settings or AutomationSettings()
        self._scripts = scripts or ScriptTable()

    @staticmethod
    def resolve(*, input_ready: bool, is_generating: bool, is_logged_in: bool, error_message: str) -> PageStatus:
        """Fixed priority: login > error > generating > ready > loading."""
        if not is_logged_in:
            return PageStatus.LOGIN_NEEDED
        if error_message:
            return PageStatus.ERROR
        if is_generating:
            return PageStatus.GENERATING
        if input_ready:
            return PageStatus.READY
        return PageStatus.LOADING

    def _on_target(self, url: str) -> bool:
        host = urlparse(url).hostname or ""
        return host == self._settings.target_host or host.endswith("." + self._settings.target_host)

    async def _probe(self, session: Session, name: str):
        return await session.evaluate(self._scripts.probe(name), timeout=self._settings.action_timeout)

    async def diagnose(self, session: Optional[Session]) -> PageDiagnosis:
        if session is None:
            return PageDiagnosis(status=PageStatus.NOT_INITIALIZED)
        if not session.connected:
            return PageDiagnosis(status=PageStatus.DISCONNECTED, error_message=session.disconnect_reason)

        url = session.url
        if not self._on_target(url):
            if any(marker in url for marker in self._scripts.login_url_markers):
                return PageDiagnosis(status=PageStatus.LOGIN_NEEDED, current_url=url)
            return PageDiagnosis(status=PageStatus.WRONG_PAGE, current_url=url)

        try:
            input_ready = bool(await self._probe(session, "input_ready"))
            is_generating = bool(await self._probe(session, "generating"))
            is_logged_in = bool(await self._probe(session, "logged_in"))
            error_message = str(await self._probe(session, "error_text") or "")
            image_capability = bool(await self._probe(session, "image_capability"))
        except TransportError as e:
            logger.warning(f"[DIAGNOSE] Transport failure while probing: {e}")
            return PageDiagnosis(status=PageStatus.DISCONNECTED, current_url=url, error_message=str(e))
        except asyncio.TimeoutError:
            return PageDiagnosis(status=PageStatus.ERROR, current_url=url, error_message="probe timed out")
        except Exception as e:
            logger.warning(f"[DIAGNOSE] Probe failed: {e}")
            return PageDiagnosis(status=PageStatus.ERROR, current_url=url, error_message=str(e))

        status = self.resolve(
            input_ready=input_ready,
            is_generating=is_generating,
            is_logged_in=is_logged_in,
            error_message=error_message,
        )
        return PageDiagnosis(
            status=status,
            current_url=url,
            input_ready=input_ready,
            is_generating=is_generating,
            is_logged_in=is_logged_in,
            error_message=error_message,
            image_capability=image_capability,
        )

    async def wait_for_status(
        self,
        session: Optional[Session],
        statuses: Iterable[PageStatus],
        timeout: float,
        interval: Optional[float] = None,
    ) -> PageDiagnosis:
        """Re-diagnose until one of ``statuses`` shows up, the session dies, or ``timeout`` passes.

        Returns the last diagnosis either way.
        """
        wanted = set(statuses)

        def settled(diagnosis: PageDiagnosis) -> bool:
            return diagnosis.status in wanted or diagnosis.status in (
                PageStatus.DISCONNECTED,
                PageStatus.NOT_INITIALIZED,
            )

        result = await poll_until(
            lambda: self.diagnose(session),
            settled,
            interval=interval or self._settings.poll_interval,
            timeout=timeout,
        )
        if not result.satisfied:
            logger.info(f"[DIAGNOSE] Still {result.value.status.value} after {timeout}s")
        return result.value
