"""Pydantic models for response watching and workflow orchestration."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WaitOutcome(str, Enum):
    COMPLETED = "completed"
    IMAGE = "image"
    FAILED = "failed"
    TIMEOUT = "timeout"


class WaitResult(BaseModel):
    """What the response watcher saw when it stopped polling.

    A timeout still carries the best partial text; check ``outcome`` before
    treating ``text`` as final.
    """

    outcome: WaitOutcome
    text: str = ""
    elapsed: float = 0.0
    polls: int = 0
    detail: str = ""

    @property
    def completed(self) -> bool:
        return self.outcome in (WaitOutcome.COMPLETED, WaitOutcome.IMAGE)


class WorkflowStage(str, Enum):
    NEW_SESSION = "new_session"
    CONFIGURE_MODE = "configure_mode"
    UPLOAD = "upload"
    VERIFY_ATTACHMENT = "verify_attachment"
    SEND_PROMPT = "send_prompt"
    AWAIT_RESPONSE = "await_response"
    EXTRACT_RESULT = "extract_result"
    CLEANUP = "cleanup"


UPLOAD_STAGES = (WorkflowStage.UPLOAD, WorkflowStage.VERIFY_ATTACHMENT)


class WorkflowFailure(str, Enum):
    WORKFLOW_EXHAUSTED = "workflow_exhausted"
    NOT_CONNECTED = "not_connected"


class WorkflowRequest(BaseModel):
    """Immutable parameters for one end-to-end generation task."""

    model_config = ConfigDict(frozen=True)

    prompt: str = Field(min_length=1)
    fallback_prompt: str = ""
    file_path: Optional[str] = None
    model: Optional[str] = None  # "pro", "flash"
    image_generation: bool = False
    expect_image: bool = False
    cleanup: bool = False
    accept_partial: bool = False
    response_timeout: Optional[float] = None


class RetryState(BaseModel):
    """Per-call attempt counter. ``attempt`` only grows and never passes the cap."""

    max_attempts: int = Field(default=3, ge=1)
    fallback_from_attempt: int = Field(default=3, ge=1)
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def advance(self) -> bool:
        """Move to the next attempt. Returns False once the cap is reached."""
        if self.exhausted:
            return False
        self.attempt += 1
        return True

    @property
    def use_fallback(self) -> bool:
        return self.attempt >= self.fallback_from_attempt

    def select_prompt(self, request: WorkflowRequest) -> str:
        if self.use_fallback and request.fallback_prompt:
            return request.fallback_prompt
        return request.prompt


class AttemptRecord(BaseModel):
    attempt: int
    prompt_kind: str  # "primary" or "fallback"
    failed_stage: Optional[WorkflowStage] = None
    detail: str = ""
    page_reset: bool = False


class WorkflowResult(BaseModel):
    success: bool
    text: str = ""
    image_base64: Optional[str] = None
    outcome: Optional[WaitOutcome] = None
    attempts: int = 0
    failure: Optional[WorkflowFailure] = None
    failed_stage: Optional[WorkflowStage] = None
    history: list[AttemptRecord] = Field(default_factory=list)
