"""Exception taxonomy for the automation engine.

Only transport failures (and caller misuse) are raised past the engine
boundary; expected soft conditions travel as result values instead.
"""

from __future__ import annotations

from playwright.async_api import Error as PlaywrightError

# Fragments Playwright uses when the browser, context or page went away.
TRANSPORT_ERROR_MARKERS = (
    "Target closed",
    "Target page, context or browser has been closed",
    "Browser has been closed",
    "browser has disconnected",
    "Connection closed",
    "Session closed",
    "Connection refused",
    "ECONNREFUSED",
)


class AutomationError(Exception):
    """Base class for all automation errors."""


class TransportError(AutomationError):
    """The remote connection failed. The owning Session is no longer usable."""


class AutomationBusyError(AutomationError):
    """A generation is already in flight, or the session is owned by someone else."""


class ConfigurationError(AutomationError):
    """The probe/action script table could not be loaded."""


def is_transport_error(exc: BaseException) -> bool:
    """Whether an exception means the connection itself is gone."""
    if isinstance(exc, TransportError):
        return True
    if isinstance(exc, (ConnectionError, EOFError)):
        return True
    if isinstance(exc, PlaywrightError):
        message = str(exc)
        return any(marker in message for marker in TRANSPORT_ERROR_MARKERS)
    return False
