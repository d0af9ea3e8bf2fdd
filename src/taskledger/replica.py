"""Persisted replica state.

The replica is one JSON document, replaced atomically on every commit:

    {
      "schema_version": 1,
      "base_version": "<last synchronized version or null>",
      "tasks": {"<uuid>": {"<property>": "<value>", ...}, ...},
      "operations": [<unsynchronized operations, oldest first>],
      "working_set": {"1": "<uuid>", ...}
    }

The working set is a convenience index only; it is never consulted to
decide whether a task exists.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from uuid import UUID

from taskledger._utils import atomic_write_json
from taskledger.errors import (
    ConflictError,
    NotFoundError,
    SchemaIncompatibleError,
    StorageIOError,
)
from taskledger.operations import (
    Create,
    Delete,
    Operation,
    Update,
    UndoPoint,
    operation_from_dict,
    operation_to_dict,
)

SCHEMA_VERSION = 1

FileStamp = tuple[int, int, int]


@dataclass
class ReplicaState:
    """In-memory image of the replica file."""

    tasks: dict[UUID, dict[str, str]] = field(default_factory=dict)
    base_version: str | None = None
    operations: list[Operation] = field(default_factory=list)
    working_set: dict[int, UUID] = field(default_factory=dict)

    def copy(self) -> "ReplicaState":
        return ReplicaState(
            tasks={task_id: dict(props) for task_id, props in self.tasks.items()},
            base_version=self.base_version,
            operations=list(self.operations),
            working_set=dict(self.working_set),
        )

    def apply(self, op: Operation) -> None:
        """Apply one operation to the task table.

        Raises:
            ConflictError: If a Create targets an existing task
            NotFoundError: If an Update or Delete targets a missing task
        """
        if isinstance(op, Create):
            if op.uuid in self.tasks:
                raise ConflictError(op.uuid, "task already exists")
            self.tasks[op.uuid] = {}
        elif isinstance(op, Delete):
            if op.uuid not in self.tasks:
                raise NotFoundError(op.uuid)
            del self.tasks[op.uuid]
            self.working_set = {i: u for i, u in self.working_set.items() if u != op.uuid}
        elif isinstance(op, Update):
            props = self.tasks.get(op.uuid)
            if props is None:
                raise NotFoundError(op.uuid)
            if op.value is None:
                props.pop(op.property, None)
            else:
                props[op.property] = op.value
        elif not isinstance(op, UndoPoint):
            raise TypeError(f"Not an operation: {op!r}")

    def revert(self, op: Operation) -> None:
        """Undo the effect of one previously applied operation."""
        if isinstance(op, Create):
            self.tasks.pop(op.uuid, None)
            self.working_set = {i: u for i, u in self.working_set.items() if u != op.uuid}
        elif isinstance(op, Delete):
            self.tasks[op.uuid] = dict(op.prior)
        elif isinstance(op, Update):
            props = self.tasks.setdefault(op.uuid, {})
            if op.old_value is None:
                props.pop(op.property, None)
            else:
                props[op.property] = op.old_value

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "base_version": self.base_version,
            "tasks": {str(task_id): props for task_id, props in self.tasks.items()},
            "operations": [operation_to_dict(op) for op in self.operations],
            "working_set": {str(i): str(u) for i, u in sorted(self.working_set.items())},
        }

    @classmethod
    def from_dict(cls, data: Any, path: Path) -> "ReplicaState":
        """Build state from a decoded replica document.

        Raises:
            SchemaIncompatibleError: If the version or layout is not understood
        """
        if not isinstance(data, dict):
            raise SchemaIncompatibleError(path, type(data).__name__, SCHEMA_VERSION)
        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise SchemaIncompatibleError(path, version, SCHEMA_VERSION)
        try:
            tasks = {
                UUID(task_id): {str(k): str(v) for k, v in props.items()}
                for task_id, props in data.get("tasks", {}).items()
            }
            operations = [operation_from_dict(item) for item in data.get("operations", [])]
            working_set = {
                int(index): UUID(task_id)
                for index, task_id in data.get("working_set", {}).items()
            }
        except (AttributeError, TypeError, ValueError) as e:
            raise SchemaIncompatibleError(path, f"malformed layout: {e}", SCHEMA_VERSION) from e
        return cls(
            tasks=tasks,
            base_version=data.get("base_version"),
            operations=operations,
            working_set=working_set,
        )


def file_stamp(path: Path) -> FileStamp | None:
    """Identity of the file's current content, or None if it does not exist."""
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageIOError.from_os_error(path, e) from e
    return (st.st_ino, st.st_mtime_ns, st.st_size)


def read_replica(path: Path) -> tuple[ReplicaState, FileStamp | None]:
    """Read the replica file; a missing file is an empty replica.

    Raises:
        StorageIOError: If the file cannot be read
        SchemaIncompatibleError: If the content is not a readable replica
    """
    stamp = file_stamp(path)
    if stamp is None:
        return ReplicaState(), None
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ReplicaState(), None
    except OSError as e:
        raise StorageIOError.from_os_error(path, e) from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaIncompatibleError(path, f"invalid JSON ({e.msg})", SCHEMA_VERSION) from e
    return ReplicaState.from_dict(data, path), stamp


def write_replica(path: Path, state: ReplicaState) -> FileStamp | None:
    """Atomically replace the replica file with ``state``.

    Raises:
        StorageIOError: If the write fails (transient for EAGAIN-like errors)
    """
    try:
        atomic_write_json(path, state.to_dict())
    except OSError as e:
        raise StorageIOError.from_os_error(path, e) from e
    return file_stamp(path)
