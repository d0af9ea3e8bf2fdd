"""TaskManager: the entry point used by CLI, hook and report code.

Wires the task store, context resolver and filter composer together. The
active context is resolved on every call and passed explicitly to the
composer, so switching contexts in the taskrc takes effect immediately.
"""

from datetime import datetime
from typing import Iterable
from uuid import UUID

from taskledger.composer import apply_write_defaults, compose
from taskledger.config import TaskLedgerSettings, get_settings
from taskledger.context import ContextResolver
from taskledger.logging import Loggers
from taskledger.models import FilterMode, FilterPurpose, Task, TaskChanges
from taskledger.operations import OperationBatch
from taskledger.store import QueryResult, TaskStore
from taskledger.sync import ExitResult, ProcessRunner, sync_and_reload

logger = Loggers.store()


class TaskManager:
    """High-level task operations scoped by the active context.

    Example:
        manager = TaskManager.from_settings()
        manager.add(TaskChanges(description="File expenses"))
        pending = list(manager.query("status:pending", sort=["due"]))
    """

    def __init__(
        self,
        store: TaskStore,
        resolver: ContextResolver,
        settings: TaskLedgerSettings | None = None,
    ):
        self.store = store
        self.resolver = resolver
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: TaskLedgerSettings | None = None) -> "TaskManager":
        settings = settings or get_settings()
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        return cls(
            TaskStore.from_settings(settings),
            ContextResolver.from_settings(settings),
            settings,
        )

    def add(
        self,
        changes: TaskChanges,
        filter_mode: FilterMode = FilterMode.COMBINE_WITH_CONTEXT,
    ) -> Task:
        """Create a task, seeding unset fields from the context's write filter."""
        context = None
        if filter_mode == FilterMode.COMBINE_WITH_CONTEXT:
            context = self.resolver.current()
        changes = apply_write_defaults(changes, filter_mode, context)
        task = self.store.create(changes)
        logger.info("task_added", task_id=str(task.uuid), context=context.name if context else None)
        return task

    def modify(
        self,
        task_id: UUID,
        changes: TaskChanges,
        expected_modified: datetime | None = None,
    ) -> Task:
        """Edit an existing task. Write filters never apply to edits."""
        return self.store.save(task_id, changes, expected_modified=expected_modified)

    def complete(self, task_id: UUID) -> Task:
        return self.store.complete(task_id)

    def delete(self, task_id: UUID) -> Task:
        return self.store.delete(task_id)

    def get(self, task_id: UUID) -> Task | None:
        return self.store.load(task_id)

    def effective_filter(
        self,
        filter: str | None = None,
        filter_mode: FilterMode = FilterMode.COMBINE_WITH_CONTEXT,
    ) -> str:
        """The filter a query with these arguments actually runs."""
        context = None
        if filter_mode == FilterMode.COMBINE_WITH_CONTEXT:
            context = self.resolver.current()
        return compose(filter, filter_mode, context, FilterPurpose.READ)

    def query(
        self,
        filter: str | None = None,
        filter_mode: FilterMode = FilterMode.COMBINE_WITH_CONTEXT,
        sort: Iterable[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> QueryResult:
        """Tasks matching ``filter`` within the active context (unless ignored)."""
        effective = self.effective_filter(filter, filter_mode)
        logger.debug("query", filter=filter, effective_filter=effective)
        return self.store.query(effective, sort=sort, limit=limit, offset=offset)

    def undo(self) -> OperationBatch | None:
        return self.store.undo()

    def sync(self, runner: ProcessRunner | None = None) -> ExitResult:
        """Run the configured sync command and reload the store."""
        settings = self.settings or get_settings()
        return sync_and_reload(
            self.store,
            runner=runner,
            timeout=settings.sync_timeout,
            command=settings.sync_command,
        )
