from __future__ import annotations

import json
from pathlib import Path

import pytest

from webchat_driver.automation.errors import ConfigurationError
from webchat_driver.automation.scripts import ScriptTable, load_script_table
from webchat_driver.constants import PROBE_SCRIPTS


def test_default_table_covers_every_probe_used_by_diagnosis() -> None:
    table = ScriptTable()
    for name in ("input_ready", "generating", "logged_in", "error_text", "image_capability"):
        assert table.probe(name) == PROBE_SCRIPTS[name]


def test_unknown_script_name_is_a_configuration_error() -> None:
    table = ScriptTable()
    with pytest.raises(ConfigurationError):
        table.probe("nope")
    with pytest.raises(ConfigurationError):
        table.action("nope")


def test_json_file_overrides_only_the_named_scripts(tmp_path: Path) -> None:
    path = tmp_path / "scripts.json"
    path.write_text(
        json.dumps({
            "version": "2099.1",
            "probes": {"input_ready": "() => true"},
            "fatal_phrases": ["Stopped"],
        }),
        encoding="utf-8",
    )

    table = load_script_table(str(path))
    assert table.version == "2099.1"
    assert table.probe("input_ready") == "() => true"
    assert table.probe("generating") == PROBE_SCRIPTS["generating"]
    assert table.fatal_phrases == ["Stopped"]


def test_unreadable_script_file_is_a_configuration_error(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_script_table(str(broken))

    listing = tmp_path / "list.json"
    listing.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_script_table(str(listing))

    with pytest.raises(ConfigurationError):
        load_script_table(str(tmp_path / "missing.json"))
