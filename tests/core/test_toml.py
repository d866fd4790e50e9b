from __future__ import annotations

import pytest

from snap_quiz.core.config import (
    TomlConfigError,
    overlay_known_keys,
    read_toml_table,
    write_toml_template,
)


DEFAULTS = {"lane": {"gap": 4.0, "retries": 3}, "name": "x"}


def test_overlay_replaces_scalars_and_keeps_defaults():
    merged = overlay_known_keys(DEFAULTS, {"lane": {"gap": 0}})

    assert merged == {"lane": {"gap": 0, "retries": 3}, "name": "x"}
    assert DEFAULTS["lane"]["gap"] == 4.0


def test_overlay_rejects_unknown_and_mistyped_keys():
    with pytest.raises(TomlConfigError, match="'lane.burst'"):
        overlay_known_keys(DEFAULTS, {"lane": {"burst": 1}})
    with pytest.raises(TomlConfigError, match="Expected a table for 'lane'"):
        overlay_known_keys(DEFAULTS, {"lane": 5})


def test_read_and_write_template(tmp_path):
    target = tmp_path / "nested" / "c.toml"

    write_toml_template(target, template="[lane]\ngap = 1.5\n")

    assert read_toml_table(target) == {"lane": {"gap": 1.5}}
    with pytest.raises(TomlConfigError, match="already exists"):
        write_toml_template(target, template="")


def test_read_reports_missing_and_broken_files(tmp_path):
    broken = tmp_path / "broken.toml"
    broken.write_text("[lane\n", encoding="utf-8")

    with pytest.raises(TomlConfigError, match="not found"):
        read_toml_table(tmp_path / "nope.toml")
    with pytest.raises(TomlConfigError, match="Failed to parse"):
        read_toml_table(broken)
