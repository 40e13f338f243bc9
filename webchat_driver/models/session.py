"""Pydantic models for session and page state."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class PageStatus(str, Enum):
    READY = "ready"
    GENERATING = "generating"
    LOADING = "loading"
    WRONG_PAGE = "wrong_page"
    ERROR = "error"
    LOGIN_NEEDED = "login_needed"
    DISCONNECTED = "disconnected"
    NOT_INITIALIZED = "not_initialized"


class PageDiagnosis(BaseModel):
    """One fresh reading of the remote page. Never cached for control decisions."""

    status: PageStatus = PageStatus.NOT_INITIALIZED
    current_url: str = ""
    input_ready: bool = False
    is_generating: bool = False
    is_logged_in: bool = False
    error_message: str = ""
    image_capability: bool = True


class RecoveryKind(str, Enum):
    NONE = "none"
    DISMISSED_DIALOG = "dismissed_dialog"
    CLICKED_RETRY = "clicked_retry"
    RELOADED = "reloaded"
    RATE_LIMITED = "rate_limited"
    SESSION_EXPIRED = "session_expired"


class RecoveryOutcome(BaseModel):
    """Tagged result of a recovery attempt.

    rate_limited and session_expired carry no automatic follow-up; the caller
    decides whether to wait or re-authenticate.
    """

    kind: RecoveryKind = RecoveryKind.NONE
    detail: str = ""

    @property
    def recovered(self) -> bool:
        return self.kind in (
            RecoveryKind.DISMISSED_DIALOG,
            RecoveryKind.CLICKED_RETRY,
            RecoveryKind.RELOADED,
        )


class SessionStatus(BaseModel):
    """Current state of the automation session, as reported by the service."""

    is_connected: bool = False
    state: str = "not_running"  # not_running, connected, disconnected, busy
    owner: Optional[str] = None
    current_url: str = ""
    busy: bool = False
    last_generation_time: Optional[str] = None
    message: str = ""
