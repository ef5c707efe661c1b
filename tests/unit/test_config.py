"""Tests for Settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from adb_console.config import Settings


def test_defaults() -> None:
    """Should use the documented defaults."""
    settings = Settings()
    assert settings.agent_version == "2.7"
    assert settings.download_timeout == 20.0
    assert settings.agent_startup_delay == 1.0
    assert settings.agent_file is None


def test_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Should read ADB_CONSOLE_* overrides."""
    monkeypatch.setenv("ADB_CONSOLE_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("ADB_CONSOLE_AGENT_VERSION", "2.4")
    monkeypatch.setenv("ADB_CONSOLE_AGENT_FILE", str(tmp_path / "server.jar"))
    monkeypatch.setenv("ADB_CONSOLE_WATCH_ENABLED", "false")
    monkeypatch.setenv("ADB_CONSOLE_MAX_FPS", "30")

    settings = Settings.from_env()

    assert settings.state_dir == tmp_path
    assert settings.db_path.parent == tmp_path
    assert settings.agent_version == "2.4"
    assert settings.agent_file == tmp_path / "server.jar"
    assert settings.watch_enabled is False
    assert settings.max_fps == 30
