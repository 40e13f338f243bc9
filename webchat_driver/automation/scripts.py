"""Versioned probe/action script tables.

The state machine only refers to scripts by name. Selector drift on the
target site is fixed by shipping a new table (a JSON file pointed to by
``SCRIPTS_FILE``), not by changing control flow.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from ..config import SCRIPTS_FILE
from ..constants import (
    ACTION_SCRIPTS,
    FATAL_RESPONSE_PHRASES,
    LOGIN_URL_MARKERS,
    PROBE_SCRIPTS,
    RATE_LIMIT_PHRASES,
    SCRIPT_TABLE_VERSION,
    SESSION_EXPIRED_PHRASES,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class ScriptTable(BaseModel):
    """Probe-name -> script and action-name -> script, plus page text markers."""

    version: str = SCRIPT_TABLE_VERSION
    probes: dict[str, str] = Field(default_factory=lambda: dict(PROBE_SCRIPTS))
    actions: dict[str, str] = Field(default_factory=lambda: dict(ACTION_SCRIPTS))
    login_url_markers: list[str] = Field(default_factory=lambda: list(LOGIN_URL_MARKERS))
    fatal_phrases: list[str] = Field(default_factory=lambda: list(FATAL_RESPONSE_PHRASES))
    rate_limit_phrases: list[str] = Field(default_factory=lambda: list(RATE_LIMIT_PHRASES))
    session_expired_phrases: list[str] = Field(default_factory=lambda: list(SESSION_EXPIRED_PHRASES))

    def probe(self, name: str) -> str:
        try:
            return self.probes[name]
        except KeyError:
            raise ConfigurationError(f"No probe script named '{name}' (table {self.version})") from None

    def action(self, name: str) -> str:
        try:
            return self.actions[name]
        except KeyError:
            raise ConfigurationError(f"No action script named '{name}' (table {self.version})") from None

    def merged(self, overrides: dict) -> ScriptTable:
        """Return a copy with ``overrides`` layered on top. Unnamed scripts keep their defaults."""
        data = self.model_dump()
        for key, value in overrides.items():
            if key in ("probes", "actions") and isinstance(value, dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return ScriptTable(**data)


def load_script_table(path: Optional[str] = None) -> ScriptTable:
    """Build the default table, overlaid with the JSON file at ``path`` (or ``SCRIPTS_FILE``)."""
    table = ScriptTable()
    source = path or SCRIPTS_FILE
    if not source:
        return table

    file_path = Path(source)
    try:
        overrides = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read script table {file_path}: {e}") from e
    if not isinstance(overrides, dict):
        raise ConfigurationError(f"Script table {file_path} must contain a JSON object.")

    try:
        table = table.merged(overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid script table {file_path}: {e}") from e

    logger.info(
        f"Loaded script table {table.version} from {file_path} "
        f"({len(table.probes)} probes, {len(table.actions)} actions)"
    )
    return table
