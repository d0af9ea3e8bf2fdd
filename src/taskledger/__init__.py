"""taskledger - A local, operation-logged task store with context filters.

This package provides the embedded data layer of a personal task manager:

- Task store with atomic batch commits, undo and a bounded retry policy
- Operation translator flattening tasks into replica properties
- Context resolver reading named read/write filters from a taskrc file
- Filter composer scoping reads and seeding defaults on writes
- Sync bridge running an external synchronization tool

CLI parsing, hooks and report rendering live outside this package and call
into TaskManager (or TaskStore and ContextResolver directly).
"""

from taskledger.composer import apply_write_defaults, compose
from taskledger.config import (
    SettingsContext,
    SettingsValidationError,
    TaskLedgerSettings,
    get_context_settings,
    get_settings,
    reload_settings,
    set_context_settings,
    set_settings,
    validate_settings,
)
from taskledger.context import ContextResolver
from taskledger.errors import (
    ConflictError,
    ErrorCode,
    ExternalToolFailedError,
    ExternalToolMissingError,
    InvalidFilterError,
    LockTimeoutError,
    MalformedPropertyError,
    NotFoundError,
    ReplicaReloadFailedError,
    SchemaIncompatibleError,
    StorageIOError,
    SyncTimeoutError,
    TaskLedgerError,
    UndefinedContextError,
)
from taskledger.logging import configure_logging
from taskledger.manager import TaskManager
from taskledger.models import (
    Annotation,
    FilterMode,
    FilterPurpose,
    Priority,
    Task,
    TaskChanges,
    TaskStatus,
    UserContext,
)
from taskledger.operations import Create, Delete, OperationBatch, UndoPoint, Update
from taskledger.store import QueryResult, TaskStore
from taskledger.sync import ExitResult, ProcessRunner, SubprocessRunner, sync_and_reload
from taskledger.taskrc import Taskrc

__all__ = [
    # Store
    "TaskStore",
    "QueryResult",
    "TaskManager",
    # Model
    "Task",
    "TaskChanges",
    "TaskStatus",
    "Priority",
    "Annotation",
    "UserContext",
    "FilterMode",
    "FilterPurpose",
    # Operations
    "Create",
    "Delete",
    "Update",
    "UndoPoint",
    "OperationBatch",
    # Contexts and filters
    "ContextResolver",
    "Taskrc",
    "compose",
    "apply_write_defaults",
    # Sync
    "ExitResult",
    "ProcessRunner",
    "SubprocessRunner",
    "sync_and_reload",
    # Settings
    "TaskLedgerSettings",
    "SettingsContext",
    "SettingsValidationError",
    "get_settings",
    "set_settings",
    "set_context_settings",
    "get_context_settings",
    "validate_settings",
    "reload_settings",
    "configure_logging",
    # Errors
    "TaskLedgerError",
    "ErrorCode",
    "NotFoundError",
    "ConflictError",
    "MalformedPropertyError",
    "UndefinedContextError",
    "InvalidFilterError",
    "StorageIOError",
    "LockTimeoutError",
    "SchemaIncompatibleError",
    "ExternalToolMissingError",
    "ExternalToolFailedError",
    "ReplicaReloadFailedError",
    "SyncTimeoutError",
]

__version__ = "0.1.0"
