"""Pydantic models for single remote actions."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class ActionError(str, Enum):
    NOT_FOUND = "not_found"
    NOT_INTERACTABLE = "not_interactable"
    TIMEOUT = "timeout"
    SCRIPT_ERROR = "script_error"
    FILE_NOT_FOUND = "file_not_found"
    FAILED = "failed"


class UploadStrategy(str, Enum):
    FILE_CHOOSER = "file_chooser"
    FILE_INPUT = "file_input"
    SCRIPT_INJECTION = "script_injection"


# Script status tags that map onto a specific soft-failure kind.
_STATUS_ERRORS = {
    "not_found": ActionError.NOT_FOUND,
    "item_not_found": ActionError.NOT_FOUND,
    "confirm_not_found": ActionError.NOT_FOUND,
    "disabled": ActionError.NOT_INTERACTABLE,
    "not_interactable": ActionError.NOT_INTERACTABLE,
}


class ActionResult(BaseModel):
    """Outcome of one remote action. Soft failures are values, not exceptions."""

    ok: bool
    status: str = ""
    error: Optional[ActionError] = None
    payload: Optional[str] = None
    strategy: Optional[UploadStrategy] = None

    @classmethod
    def success(cls, status: str = "ok", payload: Optional[str] = None, **kwargs) -> ActionResult:
        return cls(ok=True, status=status, payload=payload, **kwargs)

    @classmethod
    def failure(cls, error: ActionError, status: str = "", **kwargs) -> ActionResult:
        return cls(ok=False, error=error, status=status or error.value, **kwargs)

    @classmethod
    def from_script(cls, value: Any) -> ActionResult:
        """Translate a script's {ok, status, data} reply."""
        if not isinstance(value, dict):
            if value is True:
                return cls.success()
            return cls.failure(ActionError.SCRIPT_ERROR, status=f"unexpected reply: {value!r}")

        status = str(value.get("status", ""))
        data = value.get("data")
        payload = None if data is None else str(data)
        if value.get("ok"):
            return cls.success(status=status or "ok", payload=payload)
        return cls.failure(_STATUS_ERRORS.get(status, ActionError.FAILED), status=status, payload=payload)
