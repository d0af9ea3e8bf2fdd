"""Operation translator: task mutations to primitive replica operations.

This module is the only place that knows how a ``Task`` is flattened into
the replica's string-keyed property map:

    description, status, project, priority   plain string values
    entry, modified, due, scheduled,
    wait, end                                 epoch seconds as strings
    tag_<name>                                ""  (presence key)
    dep_<uuid>                                "x" (presence key)
    annotation_<epoch>                        annotation text
    anything else                             user attribute (UDA)

Collections are stored as one key per item so that two replicas adding
different items to the same collection touch different keys and merge
without clobbering each other.
"""

import re
from datetime import datetime, timezone
from typing import Callable, Mapping
from uuid import UUID

from taskledger.errors import ConflictError, MalformedPropertyError, NotFoundError
from taskledger.logging import Loggers
from taskledger.models import (
    OPEN_STATUSES,
    Annotation,
    Priority,
    Task,
    TaskChanges,
    TaskStatus,
    utc_now,
)
from taskledger.operations import Create, Delete, OperationBatch, Update

logger = Loggers.translator()

TAG_PREFIX = "tag_"
DEP_PREFIX = "dep_"
ANNOTATION_PREFIX = "annotation_"
DEP_MARKER = "x"

TIMESTAMP_KEYS = ("entry", "modified", "due", "scheduled", "wait", "end")
SCALAR_KEYS = ("description", "status", "project", "priority") + TIMESTAMP_KEYS
CLEARABLE_KEYS = ("project", "priority", "due", "scheduled", "wait")
RESERVED_NAMES = frozenset(SCALAR_KEYS) | {"uuid", "id", "tags", "depends", "annotations"}
RESERVED_PREFIXES = (TAG_PREFIX, DEP_PREFIX, ANNOTATION_PREFIX)

PropertyMap = dict[str, str]

_UDA_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_.-]*$")


def format_timestamp(value: datetime) -> str:
    """Format a datetime as stored: whole epoch seconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return str(int(value.timestamp()))


def parse_timestamp(key: str, value: str) -> datetime:
    """Parse a stored epoch-seconds timestamp."""
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError) as e:
        raise MalformedPropertyError(key, value, "not an epoch timestamp") from e


def validate_tag(tag: str) -> str:
    if not tag or any(ch.isspace() for ch in tag):
        raise MalformedPropertyError(f"{TAG_PREFIX}{tag}", tag, "tags must be non-empty without whitespace")
    return tag


def validate_uda_name(name: str) -> str:
    if name in RESERVED_NAMES or name.startswith(RESERVED_PREFIXES):
        raise MalformedPropertyError(name, None, "name is reserved")
    if not _UDA_NAME.match(name):
        raise MalformedPropertyError(name, None, "invalid attribute name")
    return name


def is_uda_key(key: str) -> bool:
    return key not in SCALAR_KEYS and not key.startswith(RESERVED_PREFIXES)


def flatten(task: Task) -> PropertyMap:
    """Flatten a task into its stored property map."""
    props: PropertyMap = {
        "description": task.description,
        "status": task.status.value,
    }
    for key in TIMESTAMP_KEYS:
        value = getattr(task, key)
        if value is not None:
            props[key] = format_timestamp(value)
    if task.project is not None:
        props["project"] = task.project
    if task.priority is not None:
        props["priority"] = task.priority.value
    for tag in task.tags:
        props[TAG_PREFIX + validate_tag(tag)] = ""
    for dep in task.depends:
        props[DEP_PREFIX + str(dep)] = DEP_MARKER
    for annotation in task.annotations:
        epoch = int(format_timestamp(annotation.entry))
        while f"{ANNOTATION_PREFIX}{epoch}" in props:
            epoch += 1
        props[f"{ANNOTATION_PREFIX}{epoch}"] = annotation.description
    for name, value in task.udas.items():
        props[validate_uda_name(name)] = value
    return props


def hydrate(task_id: UUID, props: Mapping[str, str]) -> Task:
    """Build a task snapshot from its stored property map.

    Raises:
        MalformedPropertyError: If a known property holds an unreadable value
    """
    status_value = props.get("status", TaskStatus.PENDING.value)
    try:
        status = TaskStatus(status_value)
    except ValueError as e:
        raise MalformedPropertyError("status", status_value, "unknown status") from e

    priority = None
    if props.get("priority"):
        try:
            priority = Priority(props["priority"])
        except ValueError as e:
            raise MalformedPropertyError("priority", props["priority"], "unknown priority") from e

    task = Task(
        uuid=task_id,
        description=props.get("description", ""),
        status=status,
        project=props.get("project"),
        priority=priority,
    )
    for key in TIMESTAMP_KEYS:
        if key in props:
            setattr(task, key, parse_timestamp(key, props[key]))

    annotations = []
    for key, value in props.items():
        if key.startswith(TAG_PREFIX):
            task.tags.add(key[len(TAG_PREFIX):])
        elif key.startswith(DEP_PREFIX):
            try:
                task.depends.add(UUID(key[len(DEP_PREFIX):]))
            except ValueError as e:
                raise MalformedPropertyError(key, value, "dependency is not a UUID") from e
        elif key.startswith(ANNOTATION_PREFIX):
            entry = parse_timestamp(key, key[len(ANNOTATION_PREFIX):])
            annotations.append(Annotation(entry=entry, description=value))
        elif key not in SCALAR_KEYS:
            task.udas[key] = value
    task.annotations = sorted(annotations, key=lambda a: a.entry)
    return task


def _key_order(key: str) -> tuple[int, str]:
    if key in SCALAR_KEYS:
        return (0, f"{SCALAR_KEYS.index(key):02d}")
    return (1, key)


def diff(
    task_id: UUID,
    old: Mapping[str, str],
    new: Mapping[str, str],
    timestamp: datetime,
) -> list[Update]:
    """Compute the per-key updates turning ``old`` into ``new``.

    Keys are visited in a fixed order (scalar fields first) so the same
    change always yields the same operations.
    """
    updates = []
    for key in sorted(set(old) | set(new), key=_key_order):
        before, after = old.get(key), new.get(key)
        if before != after:
            updates.append(Update(task_id, key, before, after, timestamp))
    return updates


class OperationTranslator:
    """Builds operation batches for task creation, update and deletion.

    Every method takes the task's current property map as read by the
    caller under the commit lock, so the batch is computed against fresh
    state. A failed precondition raises before any operation is produced.

    Example:
        translator = OperationTranslator()
        batch = translator.create(uuid4(), TaskChanges(description="Buy milk"))
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    def now(self) -> datetime:
        return self._clock().replace(microsecond=0)

    def create(self, task_id: UUID, changes: TaskChanges) -> OperationBatch:
        """Build the batch introducing a new task.

        Raises:
            MalformedPropertyError: If the description is missing or a field is invalid
        """
        if not changes.description or not changes.description.strip():
            raise MalformedPropertyError("description", changes.description, "description is required")
        now = self.now()
        base: PropertyMap = {
            "status": TaskStatus.PENDING.value,
            "entry": format_timestamp(now),
        }
        desired = self._apply_changes(task_id, base, changes, now)
        desired["modified"] = format_timestamp(now)

        batch = OperationBatch([Create(task_id)])
        batch.extend(diff(task_id, {}, desired, now))
        batch.terminate()
        logger.debug("batch_translated", action="create", task_id=str(task_id), operations=len(batch))
        return batch

    def update(
        self,
        task_id: UUID,
        current: Mapping[str, str] | None,
        changes: TaskChanges,
        expected_modified: datetime | None = None,
    ) -> OperationBatch:
        """Build the minimal batch applying ``changes`` to an existing task.

        Returns an empty batch when the changes are already in effect.

        Raises:
            NotFoundError: If the task does not exist
            ConflictError: If the task was deleted or modified since the caller read it
        """
        if current is None:
            raise NotFoundError(task_id)
        if expected_modified is not None and current.get("modified") != format_timestamp(expected_modified):
            raise ConflictError(task_id, "task was modified since it was read")
        if current.get("status") == TaskStatus.DELETED.value and changes.status is None:
            raise ConflictError(task_id, "task has been deleted")

        now = self.now()
        desired = self._apply_changes(task_id, dict(current), changes, now)
        updates = diff(task_id, current, desired, now)
        batch = OperationBatch(updates)
        stamp = format_timestamp(now)
        if updates and current.get("modified") != stamp:
            batch.append(Update(task_id, "modified", current.get("modified"), stamp, now))
        batch.terminate()
        logger.debug("batch_translated", action="update", task_id=str(task_id), operations=len(batch))
        return batch

    def delete(self, task_id: UUID, current: Mapping[str, str] | None) -> OperationBatch:
        """Build the logical-delete batch.

        Deleting an already-deleted task yields an empty batch.

        Raises:
            NotFoundError: If the task does not exist
        """
        if current is None:
            raise NotFoundError(task_id)
        if current.get("status") == TaskStatus.DELETED.value:
            return OperationBatch()
        return self.update(task_id, current, TaskChanges(status=TaskStatus.DELETED))

    def purge(self, task_id: UUID, current: Mapping[str, str] | None) -> OperationBatch:
        """Build the physical-removal batch for a logically deleted task.

        Raises:
            NotFoundError: If the task does not exist
            ConflictError: If the task is not in deleted status
        """
        if current is None:
            raise NotFoundError(task_id)
        if current.get("status") != TaskStatus.DELETED.value:
            raise ConflictError(task_id, "only deleted tasks can be purged")
        batch = OperationBatch([Delete(task_id, dict(current))])
        batch.terminate()
        return batch

    def _apply_changes(
        self,
        task_id: UUID,
        props: PropertyMap,
        changes: TaskChanges,
        now: datetime,
    ) -> PropertyMap:
        """Return ``props`` with ``changes`` applied, validating every field."""
        for name in changes.clear:
            if name in ("description", "status"):
                raise MalformedPropertyError(name, None, "cannot be cleared")
            if name in changes.udas or (name in CLEARABLE_KEYS and getattr(changes, name) is not None):
                raise MalformedPropertyError(name, None, "both set and cleared")
            if name not in CLEARABLE_KEYS:
                validate_uda_name(name)
            props.pop(name, None)

        if changes.description is not None:
            if not changes.description.strip():
                raise MalformedPropertyError("description", changes.description, "description is required")
            props["description"] = changes.description
        if changes.project is not None:
            props["project"] = changes.project
        if changes.priority is not None:
            try:
                props["priority"] = Priority(changes.priority).value
            except ValueError as e:
                raise MalformedPropertyError("priority", changes.priority, "unknown priority") from e
        for key in ("due", "scheduled", "wait"):
            value = getattr(changes, key)
            if value is not None:
                props[key] = format_timestamp(value)

        if changes.status is not None:
            try:
                status = TaskStatus(changes.status)
            except ValueError as e:
                raise MalformedPropertyError("status", changes.status, "unknown status") from e
            if props.get("status") != status.value:
                props["status"] = status.value
                if status in OPEN_STATUSES:
                    props.pop("end", None)
                else:
                    props["end"] = format_timestamp(now)

        for tag in changes.remove_tags:
            props.pop(TAG_PREFIX + validate_tag(tag), None)
        for tag in changes.add_tags:
            props[TAG_PREFIX + validate_tag(tag)] = ""

        for dep in changes.remove_depends:
            props.pop(DEP_PREFIX + str(dep), None)
        for dep in changes.add_depends:
            if dep == task_id:
                raise MalformedPropertyError(DEP_PREFIX + str(dep), DEP_MARKER, "a task cannot depend on itself")
            props[DEP_PREFIX + str(dep)] = DEP_MARKER

        if changes.remove_annotations:
            drop = set(changes.remove_annotations)
            for key in [k for k, v in props.items() if k.startswith(ANNOTATION_PREFIX) and v in drop]:
                del props[key]
        epoch = int(format_timestamp(now))
        for text in changes.add_annotations:
            while f"{ANNOTATION_PREFIX}{epoch}" in props:
                epoch += 1
            props[f"{ANNOTATION_PREFIX}{epoch}"] = text

        for name, value in changes.udas.items():
            if not isinstance(value, str):
                raise MalformedPropertyError(name, value, "attribute values must be strings")
            props[validate_uda_name(name)] = value

        return props
