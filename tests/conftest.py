from __future__ import annotations

import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from support import FakeClock, ScriptedCompletionClient  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    """A fake clock starting at t=1000 whose sleeps return instantly."""

    return FakeClock()


@pytest.fixture
def completions() -> ScriptedCompletionClient:
    return ScriptedCompletionClient()


@pytest.fixture
def data_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the workspace at a temp directory and clear config overrides."""

    home = tmp_path / "data-home"
    monkeypatch.setenv("SNAP_QUIZ_DATA_HOME", str(home))
    monkeypatch.delenv("SNAP_QUIZ_CONFIG", raising=False)
    return home
