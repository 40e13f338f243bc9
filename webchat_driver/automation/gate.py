"""Single-slot generation gate and session ownership tokens."""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .errors import AutomationBusyError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class ConcurrencyGate:
    """Non-reentrant, non-queuing mutual exclusion.

    A second entry while the slot is taken fails at once with
    ``AutomationBusyError``, including re-entry from the holder itself.
    Entry and the busy check happen without an await in between, so two
    tasks on one event loop can never both get in.
    """

    def __init__(self, name: str = "generation"):
        self._name = name
        self._holder: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._holder is not None

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    def try_enter(self, holder: str) -> bool:
        if self._holder is not None:
            return False
        self._holder = holder
        return True

    def leave(self) -> None:
        self._holder = None

    @asynccontextmanager
    async def hold(self, holder: str) -> AsyncIterator[None]:
        if not self.try_enter(holder):
            logger.warning(f"[GATE] '{holder}' rejected: {self._name} in progress ({self._holder})")
            raise AutomationBusyError(
                f"Another {self._name} is in progress ({self._holder}). Try again when it finishes."
            )
        try:
            yield
        finally:
            self.leave()


class OwnershipRegistry:
    """Token service deciding who may drive a Session.

    ``acquire`` hands out an opaque token; ``release`` only succeeds with the
    current token, so a stale holder can never free someone else's claim.
    """

    def __init__(self):
        self._owner: Optional[str] = None
        self._token: Optional[str] = None

    @property
    def owner(self) -> Optional[str]:
        return self._owner

    @property
    def is_owned(self) -> bool:
        return self._token is not None

    def acquire(self, owner: str, force: bool = False) -> Optional[str]:
        """Claim ownership. Returns the token, or None if someone else holds it."""
        if not owner:
            raise ValueError("owner must be a non-empty name")
        if self._token is not None and not force:
            logger.info(f"[OWNER] '{owner}' refused: held by '{self._owner}'")
            return None
        if self._token is not None:
            logger.warning(f"[OWNER] Forcing release: '{self._owner}' -> '{owner}'")
        self._owner = owner
        self._token = uuid.uuid4().hex
        logger.info(f"[OWNER] Acquired by '{owner}'")
        return self._token

    def release(self, token: str) -> bool:
        if token is None or token != self._token:
            return False
        logger.info(f"[OWNER] Released by '{self._owner}'")
        self._owner = None
        self._token = None
        return True

    def holds(self, token: Optional[str]) -> bool:
        return token is not None and token == self._token
