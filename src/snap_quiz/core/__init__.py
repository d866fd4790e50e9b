"""Ambient helpers: AI client, TOML config, logging and workspace."""

from __future__ import annotations

from .ai import load_client
from .logging import configure_logger, release_logger
from .workspace import WorkspaceError, ensure_workspace

__all__ = [
    "configure_logger",
    "ensure_workspace",
    "load_client",
    "release_logger",
    "WorkspaceError",
]
