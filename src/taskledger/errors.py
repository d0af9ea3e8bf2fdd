"""Error types for the task store, context resolver and sync bridge.

Every error carries a machine-readable code and structured details so
callers (CLI, hooks, reports) can build an actionable message without
parsing the text. Only errors flagged ``transient`` are ever retried, and
only by the commit step of the task store.
"""

import errno
from pathlib import Path
from typing import Any
from uuid import UUID


class ErrorCode:
    """Machine-readable error codes."""

    # Task errors
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    MALFORMED_PROPERTY = "MALFORMED_PROPERTY"

    # Context / filter errors
    UNDEFINED_CONTEXT = "UNDEFINED_CONTEXT"
    INVALID_FILTER = "INVALID_FILTER"
    CONFIG_FILE_ERROR = "CONFIG_FILE_ERROR"

    # Storage errors
    IO_ERROR = "IO_ERROR"
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    SCHEMA_INCOMPATIBLE = "SCHEMA_INCOMPATIBLE"

    # Sync bridge errors
    EXTERNAL_TOOL_MISSING = "EXTERNAL_TOOL_MISSING"
    EXTERNAL_TOOL_FAILED = "EXTERNAL_TOOL_FAILED"
    REPLICA_RELOAD_FAILED = "REPLICA_RELOAD_FAILED"
    TIMEOUT_EXPIRED = "TIMEOUT_EXPIRED"


# errno values treated as transient when raised by the physical write
TRANSIENT_ERRNOS = frozenset(
    {errno.EAGAIN, errno.EWOULDBLOCK, errno.EBUSY, errno.EINTR, errno.ETIMEDOUT}
)


class TaskLedgerError(Exception):
    """Base error for all taskledger failures.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        transient: Whether the commit retry policy may retry the failure
        details: Structured context (ids, paths, exit codes)
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        transient: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.transient = transient
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "message": self.message,
            "code": self.error_code,
            "transient": self.transient,
            "details": self.details,
        }


class NotFoundError(TaskLedgerError):
    """An operation targeted a task id that does not exist."""

    def __init__(self, task_id: UUID):
        super().__init__(
            f"Task {task_id} not found",
            ErrorCode.NOT_FOUND,
            details={"task_id": str(task_id)},
        )
        self.task_id = task_id


class ConflictError(TaskLedgerError):
    """A precondition was violated by a concurrent change."""

    def __init__(self, task_id: UUID | None, reason: str):
        target = f"Task {task_id}" if task_id is not None else "Batch"
        super().__init__(
            f"{target}: {reason}",
            ErrorCode.CONFLICT,
            details={"task_id": str(task_id) if task_id else None, "reason": reason},
        )
        self.task_id = task_id
        self.reason = reason


class MalformedPropertyError(TaskLedgerError):
    """A property name or value cannot be stored."""

    def __init__(self, property: str, value: Any, reason: str):
        super().__init__(
            f"Malformed property {property!r}: {reason}",
            ErrorCode.MALFORMED_PROPERTY,
            details={"property": property, "value": value, "reason": reason},
        )
        self.property = property
        self.value = value


class UndefinedContextError(TaskLedgerError):
    """A context name is referenced but has no definition."""

    def __init__(self, name: str):
        super().__init__(
            f"Context {name!r} is not defined",
            ErrorCode.UNDEFINED_CONTEXT,
            details={"name": name},
        )
        self.name = name


class InvalidFilterError(TaskLedgerError):
    """A filter expression is malformed or unsupported where it is used."""

    def __init__(self, filter: str, reason: str, key: str | None = None):
        location = f" ({key})" if key else ""
        super().__init__(
            f"Invalid filter{location} {filter!r}: {reason}",
            ErrorCode.INVALID_FILTER,
            details={"filter": filter, "reason": reason, "key": key},
        )
        self.filter = filter
        self.reason = reason
        self.key = key


class ConfigFileError(TaskLedgerError):
    """The key/value configuration file could not be read or written."""

    def __init__(self, path: Path, reason: str, line: int | None = None):
        where = f"{path}:{line}" if line is not None else str(path)
        super().__init__(
            f"Configuration error in {where}: {reason}",
            ErrorCode.CONFIG_FILE_ERROR,
            details={"path": str(path), "reason": reason, "line": line},
        )
        self.path = path
        self.line = line


class StorageIOError(TaskLedgerError):
    """Reading or writing the replica failed."""

    def __init__(self, path: Path, reason: str, transient: bool = False):
        super().__init__(
            f"I/O error on {path}: {reason}",
            ErrorCode.IO_ERROR,
            transient=transient,
            details={"path": str(path), "reason": reason},
        )
        self.path = path

    @classmethod
    def from_os_error(cls, path: Path, error: OSError) -> "StorageIOError":
        """Wrap an OSError, classifying it as transient or permanent."""
        return cls(
            path,
            error.strerror or str(error),
            transient=error.errno in TRANSIENT_ERRNOS,
        )


class LockTimeoutError(TaskLedgerError):
    """The commit lock could not be acquired within the timeout."""

    def __init__(self, path: Path, timeout: float):
        super().__init__(
            f"Timed out after {timeout:.2f}s waiting for lock {path}",
            ErrorCode.LOCK_TIMEOUT,
            details={"path": str(path), "timeout": timeout},
        )
        self.path = path
        self.timeout = timeout


class SchemaIncompatibleError(TaskLedgerError):
    """The persisted replica has a layout this version cannot read."""

    def __init__(self, path: Path, found: Any, expected: Any):
        super().__init__(
            f"Replica {path} has schema {found!r}, expected {expected!r}",
            ErrorCode.SCHEMA_INCOMPATIBLE,
            details={"path": str(path), "found": found, "expected": expected},
        )
        self.path = path
        self.found = found
        self.expected = expected


class ExternalToolMissingError(TaskLedgerError):
    """The synchronization tool could not be found."""

    def __init__(self, command: list[str]):
        super().__init__(
            f"Sync tool not found: {command[0] if command else '<empty>'}",
            ErrorCode.EXTERNAL_TOOL_MISSING,
            details={"command": command},
        )
        self.command = command


class ExternalToolFailedError(TaskLedgerError):
    """The synchronization tool exited with a non-zero status."""

    def __init__(self, command: list[str], exit_code: int, stdout: str, stderr: str):
        super().__init__(
            f"Sync tool {' '.join(command)!r} exited with {exit_code}",
            ErrorCode.EXTERNAL_TOOL_FAILED,
            details={
                "command": command,
                "exit_code": exit_code,
                "stdout": stdout,
                "stderr": stderr,
            },
        )
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class ReplicaReloadFailedError(TaskLedgerError):
    """The replica could not be re-opened after synchronization."""

    def __init__(self, path: Path, reason: str):
        super().__init__(
            f"Failed to reload replica {path}: {reason}",
            ErrorCode.REPLICA_RELOAD_FAILED,
            details={"path": str(path), "reason": reason},
        )
        self.path = path


class SyncTimeoutError(TaskLedgerError):
    """The synchronization tool did not finish within the timeout."""

    def __init__(self, command: list[str], timeout: float):
        super().__init__(
            f"Sync tool {' '.join(command)!r} timed out after {timeout}s",
            ErrorCode.TIMEOUT_EXPIRED,
            details={"command": command, "timeout": timeout},
        )
        self.command = command
        self.timeout = timeout
