"""Tests for engine settings"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from governance_engine.kernel.settings import EngineSettings


def test_defaults() -> None:
    settings = EngineSettings()

    assert settings.db_path == Path("governance.db")
    assert settings.rules_path is None
    assert settings.sweep_batch_size == 100
    assert settings.early_resolution is False
    assert settings.log_level == "INFO"


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOVERNANCE_DB_PATH", "/var/lib/governance.db")
    monkeypatch.setenv("GOVERNANCE_SWEEP_BATCH_SIZE", "25")
    monkeypatch.setenv("GOVERNANCE_EARLY_RESOLUTION", "true")

    settings = EngineSettings.from_env()

    assert settings.db_path == Path("/var/lib/governance.db")
    assert settings.sweep_batch_size == 25
    assert settings.early_resolution is True


def test_explicit_overrides_win_over_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOVERNANCE_SWEEP_BATCH_SIZE", "25")

    settings = EngineSettings.from_env(sweep_batch_size=7)

    assert settings.sweep_batch_size == 7


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        EngineSettings(sweep_batch_size=0)
    with pytest.raises(ValidationError):
        EngineSettings(log_level="LOUD")


def test_settings_are_frozen() -> None:
    settings = EngineSettings()

    with pytest.raises(ValidationError):
        settings.sweep_batch_size = 5
