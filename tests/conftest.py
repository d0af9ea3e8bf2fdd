"""Shared test fixtures and utilities for taskledger tests.

Provides:
- MockContext for isolating tests from global settings and the real home
- Store, resolver and manager fixtures over a temporary data directory
- A fixed clock for deterministic operation timestamps
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

from taskledger.config import (
    TaskLedgerSettings,
    reload_settings,
    set_context_settings,
    set_settings,
)
from taskledger.context import ContextResolver
from taskledger.manager import TaskManager
from taskledger.store import TaskStore
from taskledger.taskrc import Taskrc


class MockContext:
    """Context manager for isolating tests from global state.

    Handles:
    - Resetting the global settings singleton
    - Providing a temporary data directory and taskrc path
    - Hiding TASKLEDGER_* environment variables from the test

    Usage:
        with MockContext(lock_timeout=0.5) as ctx:
            store = TaskStore.from_settings(ctx.settings)
    """

    def __init__(self, **settings_kwargs):
        """Initialize mock context.

        Args:
            **settings_kwargs: Settings overrides
        """
        self._settings_kwargs = settings_kwargs
        self._temp_dir: tempfile.TemporaryDirectory | None = None
        self._settings: TaskLedgerSettings | None = None
        self._original_env: dict[str, str | None] = {}

    def __enter__(self) -> "MockContext":
        """Enter the mock context."""
        self._temp_dir = tempfile.TemporaryDirectory()
        root = Path(self._temp_dir.name)

        for var in [v for v in os.environ if v.startswith("TASKLEDGER_")]:
            self._original_env[var] = os.environ.pop(var)

        kwargs = {
            "data_dir": root / "data",
            "taskrc_path": root / "taskrc",
            "lock_timeout": 2.0,
            "retry_base_delay": 0.001,
            "retry_max_delay": 0.01,
        }
        kwargs.update(self._settings_kwargs)
        self._settings = TaskLedgerSettings(**kwargs)
        set_settings(self._settings)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit the mock context and clean up."""
        set_context_settings(None)
        for var, value in self._original_env.items():
            if value is not None:
                os.environ[var] = value
        reload_settings()
        if self._temp_dir:
            self._temp_dir.cleanup()

    @property
    def settings(self) -> TaskLedgerSettings:
        """Get the test settings instance."""
        if self._settings is None:
            raise RuntimeError("MockContext not entered")
        return self._settings

    @property
    def root(self) -> Path:
        """Get the temporary root directory."""
        if self._temp_dir is None:
            raise RuntimeError("MockContext not entered")
        return Path(self._temp_dir.name)

    def write_taskrc(self, content: str) -> Path:
        """Write the taskrc file used by the context resolver."""
        path = self.settings.taskrc_path
        path.write_text(content)
        return path


class FixedClock:
    """Deterministic clock advanced explicitly by tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 1) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def mock_context() -> Generator[MockContext, None, None]:
    """Fixture providing an isolated test context."""
    with MockContext() as ctx:
        yield ctx


@pytest.fixture
def clock() -> FixedClock:
    """Fixture providing a controllable clock."""
    return FixedClock()


@pytest.fixture
def store(mock_context: MockContext) -> TaskStore:
    """Fixture providing an empty task store."""
    return TaskStore.from_settings(mock_context.settings)


@pytest.fixture
def taskrc(mock_context: MockContext) -> Taskrc:
    """Fixture providing the taskrc with two contexts defined."""
    mock_context.write_taskrc(
        "# contexts\n"
        "context.work=project:Work\n"
        "context.work.write=project:WorkInbox\n"
        "context.home=project:Home or +family\n"
    )
    return Taskrc(mock_context.settings.taskrc_path)


@pytest.fixture
def resolver(mock_context: MockContext, taskrc: Taskrc) -> ContextResolver:
    """Fixture providing a resolver over the two-context taskrc."""
    return ContextResolver.from_settings(mock_context.settings)


@pytest.fixture
def manager(mock_context: MockContext, taskrc: Taskrc) -> TaskManager:
    """Fixture providing a task manager wired to the temporary settings."""
    return TaskManager.from_settings(mock_context.settings)
