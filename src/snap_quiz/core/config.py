"""TOML helpers behind ``snap_quiz.config``."""

from __future__ import annotations

import copy
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = [
    "TomlConfigError",
    "read_toml_table",
    "overlay_known_keys",
    "write_toml_template",
]


class TomlConfigError(RuntimeError):
    """Raised when a TOML file cannot be read, parsed or merged."""


def read_toml_table(path: Path) -> Dict[str, Any]:
    """Parse ``path`` and return its root table."""

    try:
        raw = path.read_bytes()
    except FileNotFoundError as exc:
        raise TomlConfigError(f"Config file not found: {path}") from exc
    except OSError as exc:
        raise TomlConfigError(f"Could not read config {path}: {exc}") from exc
    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise TomlConfigError(f"Failed to parse config TOML {path}: {exc}") from exc


def overlay_known_keys(
    defaults: Mapping[str, Any], override: Mapping[str, Any]
) -> Dict[str, Any]:
    """Return ``defaults`` with ``override`` applied on top.

    Every key in ``override`` must already exist in ``defaults``; tables
    merge recursively and scalars replace. ``defaults`` is not modified.
    """

    merged = copy.deepcopy(dict(defaults))
    _overlay(merged, override, prefix="")
    return merged


def _overlay(target: Dict[str, Any], override: Mapping[str, Any], *, prefix: str) -> None:
    for key, value in override.items():
        dotted = prefix + key
        if key not in target:
            raise TomlConfigError(f"Unknown configuration key '{dotted}'.")
        current = target[key]
        if isinstance(current, dict):
            if not isinstance(value, Mapping):
                raise TomlConfigError(
                    f"Expected a table for '{dotted}', found {type(value).__name__}."
                )
            _overlay(current, value, prefix=dotted + ".")
        else:
            target[key] = value


def write_toml_template(
    path: Path, *, template: str, overwrite: bool = False, mode: int = 0o600
) -> Path:
    """Write ``template`` to ``path``; existing files need ``overwrite``."""

    if path.exists() and not overwrite:
        raise TomlConfigError(f"Config already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(template, encoding="utf-8")
    try:
        path.chmod(mode)
    except PermissionError:  # pragma: no cover - depends on filesystem
        pass
    return path
