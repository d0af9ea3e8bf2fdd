"""Task store: the commit engine over the on-disk replica.

Writers are serialized by a single file lock (``FileLock``); readers never
take it and always see the last committed snapshot. Every mutation is
translated into an ``OperationBatch`` under the lock, against freshly read
state, and committed as one atomic replacement of the replica file.

Example:
    store = TaskStore(Path("~/.local/share/taskledger/replica.json").expanduser())
    task = store.create(TaskChanges(description="Write report", project="Work"))
    store.save(task.uuid, TaskChanges(add_tags={"urgent"}))
    for pending in store.query("status:pending", sort=["due", "-priority"]):
        print(pending.display_id, pending.description)
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from functools import cmp_to_key
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence
from uuid import UUID, uuid4

from taskledger.config import TaskLedgerSettings, get_settings
from taskledger.errors import ConflictError
from taskledger.filters import Predicate, compile_filter
from taskledger.locking import FileLock
from taskledger.logging import Loggers
from taskledger.models import OPEN_STATUSES, Task, TaskChanges, TaskStatus
from taskledger.operations import Create, OperationBatch
from taskledger.replica import FileStamp, ReplicaState, file_stamp, read_replica, write_replica
from taskledger.retry import RetryPolicy
from taskledger.translator import OperationTranslator, hydrate
from taskledger.undo import UndoLog

logger = Loggers.store()

SortKey = tuple[str, bool]
OPEN_VALUES = frozenset(status.value for status in OPEN_STATUSES)


def parse_sort(sort: Iterable[str] | None) -> list[SortKey]:
    """Parse sort keys such as ``["due", "-priority"]`` into (name, descending)."""
    keys = []
    for item in sort or ():
        item = item.strip()
        descending = item.startswith("-")
        name = item.lstrip("+-")
        if name:
            keys.append((name, descending))
    return keys


def _sort_value(task: Task, name: str) -> Any:
    if name == "priority":
        return 2 - task.priority.rank if task.priority else None
    if name == "status":
        return task.status.value
    if name == "uuid":
        return str(task.uuid)
    if name == "tags":
        return " ".join(sorted(task.tags)) or None
    if hasattr(task, name) and name not in ("udas", "annotations", "depends"):
        return getattr(task, name)
    return task.udas.get(name)


def _comparator(keys: list[SortKey]):
    def compare(a: Task, b: Task) -> int:
        for name, descending in keys:
            va, vb = _sort_value(a, name), _sort_value(b, name)
            if va == vb:
                continue
            # Missing values sort last in either direction
            if va is None:
                return 1
            if vb is None:
                return -1
            result = -1 if va < vb else 1
            return -result if descending else result
        ua, ub = str(a.uuid), str(b.uuid)
        return (ua > ub) - (ua < ub)

    return compare


class QueryResult:
    """Lazy, finite, restartable sequence of task snapshots.

    Bound to the replica snapshot current when the query was issued;
    iterating again replays the same snapshot, so later commits never
    shift pagination.
    """

    def __init__(
        self,
        state: ReplicaState,
        predicate: Predicate,
        sort: Sequence[SortKey],
        limit: int | None = None,
        offset: int = 0,
    ):
        self._state = state
        self._predicate = predicate
        self._sort = list(sort)
        self._limit = limit
        self._offset = offset

    def __iter__(self) -> Iterator[Task]:
        index = {task_id: i for i, task_id in self._state.working_set.items()}
        matches = []
        for task_id, props in self._state.tasks.items():
            task = hydrate(task_id, props)
            task.display_id = index.get(task_id)
            if self._predicate(task):
                matches.append(task)
        matches.sort(key=cmp_to_key(_comparator(self._sort)))
        end = None if self._limit is None else self._offset + self._limit
        yield from matches[self._offset:end]

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def first(self) -> Task | None:
        return next(iter(self), None)


class TaskStore:
    """Operation-logged task store over a single replica file.

    Public primitives are ``save``, ``delete``, ``load``, ``query`` and
    ``commit``. ``transaction()`` holds the commit lock across several of
    them for callers that need a consistent read-then-write sequence.
    """

    def __init__(
        self,
        path: Path,
        *,
        lock_path: Path | None = None,
        lock_timeout: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        undo_limit: int = 100,
        translator: OperationTranslator | None = None,
    ) -> None:
        self.path = Path(path)
        self.lock_timeout = lock_timeout
        self.undo_limit = undo_limit
        self.retry_policy = retry_policy or RetryPolicy()
        self.translator = translator or OperationTranslator()
        self.lock = FileLock(lock_path or self.path.with_suffix(".lock"), self.retry_policy)
        self._refresh_lock = threading.Lock()
        self._state = ReplicaState()
        self._stamp: FileStamp | None = None
        self._undo = UndoLog(undo_limit)
        self.reload()

    @classmethod
    def from_settings(cls, settings: TaskLedgerSettings | None = None) -> "TaskStore":
        """Open the replica configured in settings (current settings by default)."""
        settings = settings or get_settings()
        return cls(
            settings.replica_path,
            lock_path=settings.lock_path,
            lock_timeout=settings.lock_timeout,
            retry_policy=RetryPolicy.from_settings(settings),
            undo_limit=settings.undo_limit,
        )

    # ------------------------------------------------------------------
    # Snapshot management
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Re-open the persisted state, discarding the cached snapshot.

        Raises:
            StorageIOError: If the replica cannot be read
            SchemaIncompatibleError: If the replica layout is not understood
        """
        state, stamp = read_replica(self.path)
        with self._refresh_lock:
            self._publish(state, stamp)
        logger.debug("replica_loaded", path=str(self.path), tasks=len(state.tasks))

    def _publish(self, state: ReplicaState, stamp: FileStamp | None) -> None:
        self._state = state
        self._stamp = stamp
        self._undo = UndoLog.from_operations(state.operations, self.undo_limit)

    def _snapshot(self) -> ReplicaState:
        """Last committed state, refreshed if another writer replaced the file."""
        if file_stamp(self.path) != self._stamp:
            with self._refresh_lock:
                if file_stamp(self.path) != self._stamp:
                    state, stamp = read_replica(self.path)
                    self._publish(state, stamp)
        return self._state

    def _locked(self):
        return self.lock.hold(self.lock_timeout)

    def _write(self, state: ReplicaState) -> None:
        """Persist ``state`` (retrying transient failures) and publish it."""
        stamp = self.retry_policy.call(lambda: write_replica(self.path, state), "commit")
        with self._refresh_lock:
            self._publish(state, stamp)

    @contextmanager
    def transaction(self) -> Iterator["TaskStore"]:
        """Hold the commit lock across several reads and writes.

        Released on every exit path, including errors.

        Example:
            with store.transaction() as txn:
                task = txn.load(task_id)
                if task and "blocked" not in task.tags:
                    txn.save(task_id, TaskChanges(status=TaskStatus.COMPLETED))
        """
        with self._locked():
            self._snapshot()
            yield self

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(self, batch: OperationBatch) -> None:
        """Apply every operation of ``batch`` to the replica, or none of them.

        Raises:
            ConflictError: If a Create targets an existing task
            NotFoundError: If an Update or Delete targets a missing task
            LockTimeoutError: If the commit lock cannot be acquired in time
            StorageIOError: If the write fails after retries
        """
        if not batch.has_changes:
            return
        with self._locked():
            self._commit_locked(self._snapshot(), batch)

    def _commit_locked(self, state: ReplicaState, batch: OperationBatch) -> None:
        new_state = state.copy()
        for op in batch:
            new_state.apply(op)
        logged = OperationBatch(batch)
        logged.terminate()
        new_state.operations.extend(logged)

        next_index = max(new_state.working_set, default=0) + 1
        for op in batch:
            if isinstance(op, Create):
                props = new_state.tasks.get(op.uuid)
                if props is not None and props.get("status") in OPEN_VALUES:
                    new_state.working_set[next_index] = op.uuid
                    next_index += 1

        self._write(new_state)
        logger.info(
            "batch_committed",
            operations=len(batch),
            tasks=[str(task_id) for task_id in batch.task_ids],
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, changes: TaskChanges, task_id: UUID | None = None) -> Task:
        """Create a task from ``changes`` and return its snapshot.

        Raises:
            MalformedPropertyError: If the description is missing or a field is invalid
            ConflictError: If ``task_id`` already exists
        """
        task_id = task_id or uuid4()
        with self._locked():
            state = self._snapshot()
            if task_id in state.tasks:
                raise ConflictError(task_id, "task already exists")
            batch = self.translator.create(task_id, changes)
            self._commit_locked(state, batch)
            return self._load_from(self._state, task_id)

    def save(
        self,
        task_id: UUID | None,
        changes: TaskChanges,
        *,
        expected_modified: datetime | None = None,
    ) -> Task:
        """Apply ``changes`` to a task and return the resulting snapshot.

        A ``task_id`` of None creates a new task. When ``expected_modified``
        is given, the update is rejected if the task changed since then.

        Raises:
            NotFoundError: If the task does not exist
            ConflictError: If the task was deleted or modified concurrently
            LockTimeoutError, StorageIOError: For storage failures
        """
        if task_id is None:
            return self.create(changes)
        with self._locked():
            state = self._snapshot()
            batch = self.translator.update(
                task_id, state.tasks.get(task_id), changes, expected_modified
            )
            if batch.has_changes:
                self._commit_locked(state, batch)
            return self._load_from(self._state, task_id)

    def complete(self, task_id: UUID) -> Task:
        """Mark a task completed."""
        return self.save(task_id, TaskChanges(status=TaskStatus.COMPLETED))

    def delete(self, task_id: UUID) -> Task:
        """Logically delete a task; deleting a deleted task changes nothing.

        Raises:
            NotFoundError: If the task does not exist
        """
        with self._locked():
            state = self._snapshot()
            batch = self.translator.delete(task_id, state.tasks.get(task_id))
            if batch.has_changes:
                self._commit_locked(state, batch)
            else:
                logger.debug("delete_noop", task_id=str(task_id))
            return self._load_from(self._state, task_id)

    def purge(self, task_id: UUID) -> None:
        """Physically remove a logically deleted task.

        Raises:
            NotFoundError: If the task does not exist
            ConflictError: If the task is not deleted
        """
        with self._locked():
            state = self._snapshot()
            self._commit_locked(state, self.translator.purge(task_id, state.tasks.get(task_id)))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load_from(self, state: ReplicaState, task_id: UUID) -> Task | None:
        props = state.tasks.get(task_id)
        if props is None:
            return None
        task = hydrate(task_id, props)
        for index, ws_id in state.working_set.items():
            if ws_id == task_id:
                task.display_id = index
                break
        return task

    def load(self, task_id: UUID) -> Task | None:
        """Snapshot of one task, or None if it does not exist."""
        return self._load_from(self._snapshot(), task_id)

    def load_by_index(self, index: int) -> Task | None:
        """Resolve a working-set display index to a task snapshot."""
        state = self._snapshot()
        task_id = state.working_set.get(index)
        return self._load_from(state, task_id) if task_id else None

    def query(
        self,
        filter: str | None = None,
        sort: Iterable[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> QueryResult:
        """Tasks matching ``filter``, ordered by ``sort`` then by uuid.

        Raises:
            InvalidFilterError: If the filter is malformed
        """
        if limit is not None and limit < 0:
            raise ValueError("limit must be non-negative")
        if offset < 0:
            raise ValueError("offset must be non-negative")
        predicate = compile_filter(filter)
        return QueryResult(self._snapshot(), predicate, parse_sort(sort), limit, offset)

    # ------------------------------------------------------------------
    # Undo, synchronization bookkeeping, working set
    # ------------------------------------------------------------------

    @property
    def base_version(self) -> str | None:
        return self._snapshot().base_version

    @property
    def operations(self) -> list:
        """Unsynchronized operations, oldest first."""
        return list(self._snapshot().operations)

    @property
    def undo_depth(self) -> int:
        """Number of batches that can currently be undone."""
        self._snapshot()
        return len(self._undo)

    def undo(self) -> OperationBatch | None:
        """Revert the most recent unsynchronized batch.

        Returns:
            The reverted batch, or None when there is nothing to undo
        """
        with self._locked():
            state = self._snapshot()
            batch = self._undo.peek()
            if batch is None:
                return None
            ops = batch.operations
            new_state = state.copy()
            for op in reversed(ops):
                new_state.revert(op)
            del new_state.operations[len(new_state.operations) - len(ops):]
            self._write(new_state)
            logger.info("batch_undone", operations=len(ops), tasks=[str(t) for t in batch.task_ids])
            return batch

    def mark_synchronized(self, base_version: str) -> None:
        """Record a completed synchronization.

        Clears the unsynchronized operations log and evicts the undo log.
        """
        with self._locked():
            new_state = self._snapshot().copy()
            new_state.operations = []
            new_state.base_version = base_version
            self._write(new_state)
            logger.info("replica_synchronized", base_version=base_version)

    def rebuild_working_set(self) -> dict[int, UUID]:
        """Renumber pending and waiting tasks from 1 by entry time.

        Previously handed-out display indexes become invalid.
        """
        with self._locked():
            new_state = self._snapshot().copy()
            pending = [
                (props.get("entry", ""), str(task_id), task_id)
                for task_id, props in new_state.tasks.items()
                if props.get("status") in OPEN_VALUES
            ]
            pending.sort(key=lambda item: (int(item[0] or 0), item[1]))
            new_state.working_set = {i: task_id for i, (_, _, task_id) in enumerate(pending, start=1)}
            self._write(new_state)
            logger.debug("working_set_rebuilt", size=len(new_state.working_set))
            return dict(new_state.working_set)
