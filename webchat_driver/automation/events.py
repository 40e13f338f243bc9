"""Log-event stream for callers that want to follow what the engine is doing."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel

from ..config import LOG_BUFFER_SIZE

PACKAGE_LOGGER = "webchat_driver"


class LogEvent(BaseModel):
    timestamp: str
    level: str
    logger: str
    message: str


LogCallback = Callable[[LogEvent], None]


class LogEventStream(logging.Handler):
    """A logging handler that fans records out to subscribers.

    Keeps the most recent events in a bounded buffer so late subscribers
    (and the ``/logs`` endpoint) can catch up.
    """

    def __init__(self, capacity: int = LOG_BUFFER_SIZE, level: int = logging.INFO):
        super().__init__(level)
        self._buffer: deque[LogEvent] = deque(maxlen=capacity)
        self._subscribers: list[LogCallback] = []
        self._attached_to: Optional[logging.Logger] = None

    def attach(self, name: str = PACKAGE_LOGGER) -> LogEventStream:
        target = logging.getLogger(name)
        if self not in target.handlers:
            target.addHandler(self)
        self._attached_to = target
        return self

    def detach(self) -> None:
        if self._attached_to is not None:
            self._attached_to.removeHandler(self)
            self._attached_to = None

    def subscribe(self, callback: LogCallback) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def recent(self, limit: Optional[int] = None) -> list[LogEvent]:
        events = list(self._buffer)
        return events[-limit:] if limit else events

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=record.getMessage(),
            )
        except Exception:
            self.handleError(record)
            return

        self._buffer.append(event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                self.handleError(record)
