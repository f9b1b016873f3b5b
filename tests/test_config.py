from __future__ import annotations

import pytest
from pydantic import ValidationError

from worktree_init.config import WorktreeInitSettings


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKTREE_INIT_LOG_LEVEL", " debug ")
    monkeypatch.setenv("WORKTREE_INIT_FLUSH_TIMEOUT", "1.5")

    settings = WorktreeInitSettings()

    assert settings.log_level == "DEBUG"
    assert settings.flush_timeout == 1.5


def test_settings_reject_unknown_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKTREE_INIT_LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        WorktreeInitSettings()


def test_settings_reject_non_positive_flush_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKTREE_INIT_FLUSH_TIMEOUT", "0")
    with pytest.raises(ValidationError):
        WorktreeInitSettings()
