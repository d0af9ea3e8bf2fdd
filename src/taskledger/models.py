"""Value types for tasks, task changes and contexts.

These types carry no storage behaviour: multi-valued fields are plain
sets and lists here, and only the operation translator knows how they are
flattened into replica properties.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID


class TaskStatus(str, Enum):
    """Valid task statuses."""

    PENDING = "pending"
    COMPLETED = "completed"
    DELETED = "deleted"
    WAITING = "waiting"


class Priority(str, Enum):
    """Valid task priorities, highest first."""

    HIGH = "H"
    MEDIUM = "M"
    LOW = "L"

    @property
    def rank(self) -> int:
        """Sort rank, lower is more urgent."""
        return {"H": 0, "M": 1, "L": 2}[self.value]


class FilterMode(str, Enum):
    """Whether a call is scoped by the active context."""

    COMBINE_WITH_CONTEXT = "combine"
    IGNORE_CONTEXT = "ignore"


class FilterPurpose(str, Enum):
    """What a composed filter is used for."""

    READ = "read"
    WRITE = "write"


# Statuses a task is still actionable in; they carry no end timestamp
OPEN_STATUSES = (TaskStatus.PENDING, TaskStatus.WAITING)


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds (the stored precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _safe_enum(enum_cls, value, default):
    """Convert value to enum, returning default if invalid."""
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Annotation:
    """A timestamped note attached to a task."""

    entry: datetime
    description: str


@dataclass
class Task:
    """Snapshot of a task as stored in the replica.

    ``display_id`` is the transient working-set index; it is not part of
    equality and becomes stale whenever the working set is rebuilt.
    """

    uuid: UUID
    description: str
    status: TaskStatus = TaskStatus.PENDING
    entry: datetime | None = None
    modified: datetime | None = None
    due: datetime | None = None
    scheduled: datetime | None = None
    wait: datetime | None = None
    end: datetime | None = None
    project: str | None = None
    priority: Priority | None = None
    tags: set[str] = field(default_factory=set)
    annotations: list[Annotation] = field(default_factory=list)
    depends: set[UUID] = field(default_factory=set)
    udas: dict[str, str] = field(default_factory=dict)
    display_id: int | None = field(default=None, compare=False)

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "uuid": str(self.uuid),
            "description": self.description,
            "status": self.status.value,
            "entry": _ts(self.entry),
            "modified": _ts(self.modified),
            "due": _ts(self.due),
            "scheduled": _ts(self.scheduled),
            "wait": _ts(self.wait),
            "end": _ts(self.end),
            "project": self.project,
            "priority": self.priority.value if self.priority else None,
            "tags": sorted(self.tags),
            "annotations": [
                {"entry": _ts(a.entry), "description": a.description}
                for a in self.annotations
            ],
            "depends": sorted(str(d) for d in self.depends),
            "udas": dict(self.udas),
            "id": self.display_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        priority = data.get("priority")
        return cls(
            uuid=UUID(data["uuid"]),
            description=data["description"],
            status=_safe_enum(TaskStatus, data.get("status", "pending"), TaskStatus.PENDING),
            entry=_parse_ts(data.get("entry")),
            modified=_parse_ts(data.get("modified")),
            due=_parse_ts(data.get("due")),
            scheduled=_parse_ts(data.get("scheduled")),
            wait=_parse_ts(data.get("wait")),
            end=_parse_ts(data.get("end")),
            project=data.get("project"),
            priority=_safe_enum(Priority, priority, None) if priority else None,
            tags=set(data.get("tags", [])),
            annotations=[
                Annotation(entry=_parse_ts(a["entry"]), description=a["description"])
                for a in data.get("annotations", [])
            ],
            depends={UUID(d) for d in data.get("depends", [])},
            udas=dict(data.get("udas", {})),
            display_id=data.get("id"),
        )


# Scalar fields a TaskChanges may set or clear
SCALAR_FIELDS = ("description", "status", "project", "priority", "due", "scheduled", "wait")


@dataclass
class TaskChanges:
    """A requested set of field changes for one task.

    Scalar fields left as ``None`` are untouched; to clear one, name it in
    ``clear``. User attributes are set through ``udas`` and removed by
    naming them in ``clear`` as well. Collection fields are expressed as
    item-level additions and removals, never as a replacement value.

    Example:
        TaskChanges(project="Work", add_tags={"urgent"}, clear={"due"})
    """

    description: str | None = None
    status: TaskStatus | None = None
    project: str | None = None
    priority: Priority | None = None
    due: datetime | None = None
    scheduled: datetime | None = None
    wait: datetime | None = None
    clear: set[str] = field(default_factory=set)
    add_tags: set[str] = field(default_factory=set)
    remove_tags: set[str] = field(default_factory=set)
    add_annotations: list[str] = field(default_factory=list)
    remove_annotations: list[str] = field(default_factory=list)
    add_depends: set[UUID] = field(default_factory=set)
    remove_depends: set[UUID] = field(default_factory=set)
    udas: dict[str, str] = field(default_factory=dict)

    def is_specified(self, name: str) -> bool:
        """Whether the caller explicitly set or cleared a scalar field or UDA."""
        if name in self.clear:
            return True
        if name in SCALAR_FIELDS:
            return getattr(self, name) is not None
        return name in self.udas

    def is_empty(self) -> bool:
        return not (
            any(getattr(self, name) is not None for name in SCALAR_FIELDS)
            or self.clear
            or self.add_tags
            or self.remove_tags
            or self.add_annotations
            or self.remove_annotations
            or self.add_depends
            or self.remove_depends
            or self.udas
        )


@dataclass(frozen=True)
class UserContext:
    """A named read/write filter pair defined in configuration."""

    name: str
    read_filter: str
    write_filter: str | None = None
    active: bool = False
