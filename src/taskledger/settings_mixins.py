"""Settings mixins for storage, contexts and logging.

StorageSettingsMixin: replica location, commit lock and retry tuning, undo, sync.
ContextSettingsMixin: taskrc location and undefined-context policy.
LoggingSettingsMixin: log level and format.

Composed into TaskLedgerSettings in config.py.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator


def _expand(v: str | Path) -> Path:
    if isinstance(v, str):
        return Path(v).expanduser()
    return v.expanduser()


class StorageSettingsMixin:
    """Settings for the on-disk replica and its commit engine.

    Mixin class that provides:
    - Data directory and derived replica/lock paths
    - Commit lock timeout
    - Retry policy parameters for transient commit failures
    - Undo log bound and sync bridge command

    Should be composed with BaseSettings via multiple inheritance.
    """

    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".local" / "share" / "taskledger",
        title="Data Directory",
        description="Directory holding the replica file and its lock",
    )
    lock_timeout: float = Field(
        default=10.0,
        gt=0,
        title="Lock Timeout",
        description="Seconds to wait for the commit lock before failing",
    )
    retry_max_attempts: int = Field(
        default=5,
        ge=1,
        title="Retry Attempts",
        description="Maximum attempts for a commit hitting transient I/O errors",
    )
    retry_base_delay: float = Field(
        default=0.05,
        ge=0,
        title="Retry Base Delay",
        description="Initial backoff delay in seconds",
    )
    retry_max_delay: float = Field(
        default=1.0,
        ge=0,
        title="Retry Max Delay",
        description="Upper bound for a single backoff delay in seconds",
    )
    retry_jitter: float = Field(
        default=0.1,
        ge=0,
        le=1,
        title="Retry Jitter",
        description="Random fraction added to or removed from each delay",
    )
    undo_limit: int = Field(
        default=100,
        ge=0,
        title="Undo Limit",
        description="Number of recent batches kept available for undo",
    )
    sync_command: list[str] = Field(
        default_factory=lambda: ["task", "sync"],
        title="Sync Command",
        description="External command run by the sync bridge",
    )
    sync_timeout: float | None = Field(
        default=60.0,
        title="Sync Timeout",
        description="Seconds before the sync command is killed (None waits forever)",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand ~ in the data directory."""
        return _expand(v)

    @property
    def replica_path(self) -> Path:
        """Replica state file."""
        return self.data_dir / "replica.json"

    @property
    def lock_path(self) -> Path:
        """Commit lock file."""
        return self.data_dir / "replica.lock"


class ContextSettingsMixin:
    """Settings for context resolution.

    Should be composed with BaseSettings via multiple inheritance.
    """

    taskrc_path: Path = Field(
        default_factory=lambda: Path.home() / ".taskrc",
        title="Taskrc Path",
        description="Key/value configuration file holding context definitions",
    )
    undefined_context_policy: Literal["error", "clear"] = Field(
        default="error",
        title="Undefined Context Policy",
        description=(
            "What to do when the active context names no definition: "
            "raise, or clear the active pointer and continue"
        ),
    )

    @field_validator("taskrc_path", mode="before")
    @classmethod
    def expand_taskrc(cls, v: str | Path) -> Path:
        """Expand ~ in the taskrc path."""
        return _expand(v)


class LoggingSettingsMixin:
    """Settings for structured logging.

    Note: This is a mixin, not a BaseSettings subclass, to avoid
    MRO issues when composed with other settings classes.
    """

    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning",
        title="Log Level",
        description="Logging verbosity level",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        title="Log Format",
        description="Log output format (console for dev, json for production)",
    )
