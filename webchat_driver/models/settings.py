"""Pydantic snapshot of the runtime configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field

from .. import config


class AutomationSettings(BaseModel):
    """Timeouts, retry budgets and target for one automation instance.

    Defaults come from the environment (see ``config``); pass overrides to
    build a differently tuned instance.
    """

    cdp_host: str = config.CDP_HOST
    cdp_port: int = config.CDP_PORT
    headless: bool = config.BROWSER_HEADLESS
    target_url: str = config.TARGET_URL
    target_host: str = config.TARGET_HOST

    connect_attempts: int = Field(default=config.CONNECT_ATTEMPTS, ge=1)
    connect_timeout: float = Field(default=config.CONNECT_TIMEOUT, gt=0)
    connect_retry_delay: float = Field(default=config.CONNECT_RETRY_DELAY, ge=0)
    health_check_timeout: float = Field(default=config.HEALTH_CHECK_TIMEOUT, gt=0)
    navigation_timeout: float = Field(default=config.NAVIGATION_TIMEOUT, gt=0)

    action_timeout: float = Field(default=config.ACTION_TIMEOUT, gt=0)
    upload_strategy_timeout: float = Field(default=config.UPLOAD_STRATEGY_TIMEOUT, gt=0)
    attachment_timeout: float = Field(default=config.ATTACHMENT_TIMEOUT, gt=0)
    send_button_timeout: float = Field(default=config.SEND_BUTTON_TIMEOUT, gt=0)
    settle_delay: float = Field(default=config.SETTLE_DELAY, ge=0)

    poll_interval: float = Field(default=config.POLL_INTERVAL, gt=0)
    response_timeout: float = Field(default=config.RESPONSE_TIMEOUT, gt=0)
    completion_grace_delay: float = Field(default=config.COMPLETION_GRACE_DELAY, ge=0)
    image_marker_min_elapsed: float = Field(default=config.IMAGE_MARKER_MIN_ELAPSED, ge=0)
    ready_for_input_timeout: float = Field(default=config.READY_FOR_INPUT_TIMEOUT, gt=0)

    max_attempts: int = Field(default=config.WORKFLOW_MAX_ATTEMPTS, ge=1)
    retry_delay: float = Field(default=config.WORKFLOW_RETRY_DELAY, ge=0)
    fallback_from_attempt: int = Field(default=config.WORKFLOW_FALLBACK_ATTEMPT, ge=1)
    extract_attempts: int = Field(default=config.EXTRACT_ATTEMPTS, ge=1)
    upload_failures_before_reset: int = Field(default=config.UPLOAD_FAILURES_BEFORE_RESET, ge=1)

    @property
    def cdp_endpoint(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"
