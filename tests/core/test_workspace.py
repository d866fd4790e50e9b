from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from snap_quiz.core import workspace


def test_ensure_workspace_creates_directories(tmp_path, monkeypatch):
    root = tmp_path / "data"
    monkeypatch.setenv(workspace.WORKSPACE_ENV, str(root))

    layout = workspace.ensure_workspace()

    assert layout.home == root
    assert sorted(layout.directories) == ["config", "logs", "state"]
    for name, path in layout.items():
        assert path.is_dir()
        assert layout.created[name] is True
    assert layout.created["home"] is True


def test_second_call_reports_existing(tmp_path):
    first = workspace.ensure_workspace(path=tmp_path / "ws")
    second = workspace.ensure_workspace(path=tmp_path / "ws")

    assert first.home == second.home
    assert not any(second.created.values())


def test_without_create_touches_nothing(tmp_path):
    root = tmp_path / "deferred"

    layout = workspace.ensure_workspace(env={workspace.WORKSPACE_ENV: str(root)}, create=False)

    assert layout.path_for("state") == root / "state"
    assert not root.exists()


def test_errors_when_home_is_a_file(tmp_path):
    root = tmp_path / "file"
    root.write_text("not a dir", encoding="utf-8")

    with pytest.raises(workspace.WorkspaceError):
        workspace.ensure_workspace(path=root)


def test_unknown_directory_key(tmp_path):
    layout = workspace.ensure_workspace(path=tmp_path / "ws", create=False)

    with pytest.raises(KeyError):
        layout.path_for("vector_dbs")


def test_default_location_falls_back_to_tempdir(tmp_path, monkeypatch):
    default = tmp_path / "home" / ".snap-quiz-data"
    monkeypatch.setattr(workspace, "DEFAULT_WORKSPACE", default)
    monkeypatch.setattr(tempfile, "gettempdir", lambda: str(tmp_path / "tmp"))
    real_ensure_dir = workspace._ensure_dir

    def fake_ensure_dir(path: Path) -> bool:
        if path == default:
            raise PermissionError("denied")
        return real_ensure_dir(path)

    monkeypatch.setattr(workspace, "_ensure_dir", fake_ensure_dir)

    layout = workspace.ensure_workspace(env={})

    assert layout.home == tmp_path / "tmp" / "snap-quiz-data"
    assert layout.path_for("logs").is_dir()


def test_override_never_falls_back(tmp_path, monkeypatch):
    def deny(path: Path) -> bool:
        raise PermissionError("nope")

    monkeypatch.setattr(workspace, "_ensure_dir", deny)

    with pytest.raises(workspace.WorkspaceError):
        workspace.ensure_workspace(path=tmp_path / "locked")
