"""Primitive replica operations and operation batches.

An operation is the atomic unit of change recorded in the replica's
operations log. A batch is the unit of commit: all of its operations are
applied or none are.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Union
from uuid import UUID


@dataclass(frozen=True)
class Create:
    """Introduce a new task identity with an empty property map."""

    uuid: UUID


@dataclass(frozen=True)
class Delete:
    """Physically remove a task.

    ``prior`` holds the full property map so the removal can be undone
    until the operation is synchronized.
    """

    uuid: UUID
    prior: dict[str, str] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class Update:
    """Set (``value`` is a string) or clear (``value`` is None) one property."""

    uuid: UUID
    property: str
    old_value: str | None
    value: str | None
    timestamp: datetime


@dataclass(frozen=True)
class UndoPoint:
    """Marks the end of one user-visible step in the operations log."""


Operation = Union[Create, Delete, Update, UndoPoint]


def operation_to_dict(op: Operation) -> dict[str, Any]:
    """Serialize an operation for the persisted operations log."""
    if isinstance(op, Create):
        return {"type": "create", "uuid": str(op.uuid)}
    if isinstance(op, Delete):
        return {"type": "delete", "uuid": str(op.uuid), "prior": dict(op.prior)}
    if isinstance(op, Update):
        return {
            "type": "update",
            "uuid": str(op.uuid),
            "property": op.property,
            "old_value": op.old_value,
            "value": op.value,
            "timestamp": int(op.timestamp.timestamp()),
        }
    if isinstance(op, UndoPoint):
        return {"type": "undo_point"}
    raise TypeError(f"Not an operation: {op!r}")


def operation_from_dict(data: dict[str, Any]) -> Operation:
    """Deserialize an operation from the persisted operations log.

    Raises:
        ValueError: If the entry has an unknown type or missing fields
    """
    kind = data.get("type")
    try:
        if kind == "create":
            return Create(UUID(data["uuid"]))
        if kind == "delete":
            return Delete(UUID(data["uuid"]), dict(data.get("prior", {})))
        if kind == "update":
            return Update(
                uuid=UUID(data["uuid"]),
                property=data["property"],
                old_value=data.get("old_value"),
                value=data.get("value"),
                timestamp=datetime.fromtimestamp(data["timestamp"], tz=timezone.utc),
            )
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed {kind} operation: {data!r}") from e
    if kind == "undo_point":
        return UndoPoint()
    raise ValueError(f"Unknown operation type: {kind!r}")


class OperationBatch:
    """An ordered sequence of operations committed as one unit.

    Example:
        batch = OperationBatch([Create(task_id)])
        batch.append(Update(task_id, "description", None, "Buy milk", now))
        batch.terminate()
        store.commit(batch)
    """

    def __init__(self, operations: Iterable[Operation] | None = None):
        self._operations: list[Operation] = list(operations or [])

    def append(self, op: Operation) -> None:
        self._operations.append(op)

    def extend(self, ops: Iterable[Operation]) -> None:
        self._operations.extend(ops)

    def terminate(self) -> None:
        """End the batch with an UndoPoint unless it is empty or already ended."""
        if self.has_changes and not isinstance(self._operations[-1], UndoPoint):
            self._operations.append(UndoPoint())

    @property
    def operations(self) -> list[Operation]:
        return list(self._operations)

    @property
    def has_changes(self) -> bool:
        """Whether any operation in the batch changes stored state."""
        return any(not isinstance(op, UndoPoint) for op in self._operations)

    @property
    def task_ids(self) -> list[UUID]:
        """Ids touched by the batch, in first-touched order."""
        seen: dict[UUID, None] = {}
        for op in self._operations:
            if not isinstance(op, UndoPoint):
                seen.setdefault(op.uuid, None)
        return list(seen)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OperationBatch):
            return NotImplemented
        return self._operations == other._operations

    def __repr__(self) -> str:
        return f"OperationBatch({self._operations!r})"
