"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest

from governance_engine.directory import SQLiteDirectory
from governance_engine.engine import GovernanceEngine
from governance_engine.kernel.events import RecordingEventSink
from governance_engine.kernel.settings import EngineSettings
from governance_engine.kernel.store import SQLiteGovernanceStore
from governance_engine.kernel.time import TestTimeProvider
from helpers import seed_directory


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Database file path inside a per-test temporary directory"""
    return tmp_path / "governance.db"


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(temp_db: Path) -> EngineSettings:
    return EngineSettings(db_path=temp_db)


@pytest.fixture
def store(temp_db: Path) -> SQLiteGovernanceStore:
    """Provide a fresh store for each test"""
    return SQLiteGovernanceStore(temp_db)


@pytest.fixture
def directory(temp_db: Path, test_time: TestTimeProvider) -> SQLiteDirectory:
    """Directory seeded with northmarch, southreach and freeport"""
    return seed_directory(SQLiteDirectory(temp_db, time_provider=test_time))


@pytest.fixture
def recording_sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def make_engine(
    directory: SQLiteDirectory,
    temp_db: Path,
    test_time: TestTimeProvider,
    recording_sink: RecordingEventSink,
) -> Callable[..., GovernanceEngine]:
    """
    Factory for engines over the seeded directory

    Keyword arguments other than register_builtins/registry are settings.
    """

    def factory(
        register_builtins: bool = True, registry=None, **setting_overrides
    ) -> GovernanceEngine:
        return GovernanceEngine.with_directory(
            directory,
            settings=EngineSettings(db_path=temp_db, **setting_overrides),
            time_provider=test_time,
            event_sink=recording_sink,
            register_builtins=register_builtins,
            registry=registry,
        )

    return factory


@pytest.fixture
def engine(make_engine: Callable[..., GovernanceEngine]) -> GovernanceEngine:
    """Engine with built-in handlers and default settings"""
    return make_engine()
