"""Settings validation and transition overrides."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from encore.api.core.config import Settings
from encore.shared.lifecycle import LifecycleStateMachine
from encore.shared.models import KaraokeStatus, RequestKind


def test_postgres_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, store_backend="postgres")


def test_memory_backend_needs_no_database(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    settings = Settings(_env_file=None, store_backend="memory")
    assert settings.database_url == ""


def test_invalid_log_level_falls_back():
    settings = Settings(_env_file=None, store_backend="memory", log_level="chatty")
    assert settings.log_level == "INFO"


def test_cors_origins():
    settings = Settings(
        _env_file=None,
        store_backend="memory",
        frontend_url="https://guests.example",
        operator_url="https://ops.example",
    )
    assert settings.cors_origins == ["https://guests.example", "https://ops.example"]


def test_transitions_from_environment(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv(
        "KARAOKE_TRANSITIONS",
        '{"QUEUED": ["CALLED", "CANCELLED"], "CALLED": ["ON_STAGE"], "ON_STAGE": ["COMPLETED"]}',
    )
    settings = Settings(_env_file=None)
    assert settings.karaoke_transitions["CALLED"] == ["ON_STAGE"]

    machine = LifecycleStateMachine.from_overrides(
        {RequestKind.KARAOKE: settings.karaoke_transitions}
    )
    table = machine.table_for(RequestKind.KARAOKE)
    assert not table.can_transition(KaraokeStatus.CALLED, KaraokeStatus.QUEUED)
    assert table.can_transition(KaraokeStatus.QUEUED, KaraokeStatus.CALLED)
