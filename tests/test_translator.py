"""Tests for the operation translator."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from taskledger.errors import ConflictError, MalformedPropertyError, NotFoundError
from taskledger.models import Annotation, Priority, Task, TaskChanges, TaskStatus
from taskledger.operations import Create, Delete, UndoPoint, Update
from taskledger.replica import ReplicaState
from taskledger.translator import (
    OperationTranslator,
    diff,
    flatten,
    format_timestamp,
    hydrate,
)


def _apply(props, batch):
    """Apply a batch to a single-task property map."""
    state = ReplicaState(tasks={})
    task_id = batch.task_ids[0]
    if props is not None:
        state.tasks[task_id] = dict(props)
    for op in batch:
        state.apply(op)
    return state.tasks.get(task_id)


@pytest.fixture
def translator(clock) -> OperationTranslator:
    return OperationTranslator(clock=clock)


@pytest.fixture
def existing(translator):
    """A created task and its property map."""
    task_id = uuid4()
    batch = translator.create(task_id, TaskChanges(description="Write report", project="Work"))
    return task_id, _apply(None, batch)


class TestFlattening:
    """Tests for the task <-> property map convention."""

    def test_flatten_uses_per_item_keys(self):
        """Test that collections become one key per item."""
        dep = uuid4()
        entry = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        task = Task(
            uuid=uuid4(),
            description="Pay rent",
            entry=entry,
            tags={"home", "money"},
            depends={dep},
            annotations=[Annotation(entry=entry, description="call landlord")],
            udas={"estimate": "2h"},
        )

        props = flatten(task)

        assert props["description"] == "Pay rent"
        assert props["status"] == "pending"
        assert props["entry"] == format_timestamp(entry)
        assert props["tag_home"] == ""
        assert props["tag_money"] == ""
        assert props[f"dep_{dep}"] == "x"
        assert props[f"annotation_{int(entry.timestamp())}"] == "call landlord"
        assert props["estimate"] == "2h"

    def test_hydrate_reverses_flatten(self):
        """Test that hydrating a flattened task yields an equal task."""
        entry = datetime(2024, 1, 2, tzinfo=timezone.utc)
        task = Task(
            uuid=uuid4(),
            description="Pay rent",
            entry=entry,
            modified=entry,
            project="Home",
            priority=Priority.HIGH,
            tags={"home"},
            depends={uuid4()},
            annotations=[Annotation(entry=entry, description="note")],
            udas={"estimate": "2h"},
        )

        assert hydrate(task.uuid, flatten(task)) == task

    def test_hydrate_rejects_unknown_status(self):
        """Test that a corrupt status is reported as malformed."""
        with pytest.raises(MalformedPropertyError, match="status"):
            hydrate(uuid4(), {"description": "x", "status": "archived"})

    def test_schedule_and_wait_round_trip(self):
        """Test that scheduled, wait and the waiting status survive flattening."""
        entry = datetime(2024, 1, 2, tzinfo=timezone.utc)
        task = Task(
            uuid=uuid4(),
            description="Renew passport",
            status=TaskStatus.WAITING,
            entry=entry,
            scheduled=datetime(2024, 2, 1, 8, tzinfo=timezone.utc),
            wait=datetime(2024, 1, 25, tzinfo=timezone.utc),
        )

        props = flatten(task)

        assert props["status"] == "waiting"
        assert props["scheduled"] == format_timestamp(task.scheduled)
        assert props["wait"] == format_timestamp(task.wait)
        assert hydrate(task.uuid, props) == task

    def test_reserved_uda_name_rejected(self):
        """Test that user attributes cannot shadow reserved keys."""
        task = Task(uuid=uuid4(), description="x", udas={"tag_foo": "1"})
        with pytest.raises(MalformedPropertyError):
            flatten(task)


class TestCreate:
    """Tests for creation batches."""

    def test_create_batch_shape(self, translator, clock):
        """Test Create first, one Update per field, UndoPoint last."""
        task_id = uuid4()
        batch = translator.create(task_id, TaskChanges(description="Buy milk", add_tags={"shop"}))
        ops = batch.operations

        assert ops[0] == Create(task_id)
        assert isinstance(ops[-1], UndoPoint)
        updates = {op.property: op.value for op in ops[1:-1]}
        assert updates == {
            "description": "Buy milk",
            "status": "pending",
            "entry": format_timestamp(clock.now),
            "modified": format_timestamp(clock.now),
            "tag_shop": "",
        }
        assert all(op.old_value is None for op in ops[1:-1])

    def test_create_requires_description(self, translator):
        """Test that a blank description is rejected before any operation."""
        with pytest.raises(MalformedPropertyError, match="description"):
            translator.create(uuid4(), TaskChanges(description="  "))

    def test_self_dependency_rejected(self, translator):
        """Test that a task cannot depend on itself."""
        task_id = uuid4()
        with pytest.raises(MalformedPropertyError, match="itself"):
            translator.create(task_id, TaskChanges(description="x", add_depends={task_id}))


class TestUpdate:
    """Tests for update batches."""

    def test_scalar_change_emits_single_update(self, translator, existing, clock):
        """Test that changing one scalar touches only that key and modified."""
        task_id, props = existing
        clock.advance()

        batch = translator.update(task_id, props, TaskChanges(description="Write final report"))
        updates = [op for op in batch if isinstance(op, Update)]

        assert [op.property for op in updates] == ["description", "modified"]
        assert updates[0].old_value == "Write report"
        assert updates[0].value == "Write final report"
        assert isinstance(batch.operations[-1], UndoPoint)

    def test_clear_emits_update_to_none(self, translator, existing):
        """Test that clearing a field emits Update(old, None)."""
        task_id, props = existing

        batch = translator.update(task_id, props, TaskChanges(clear={"project"}))
        update = next(op for op in batch if isinstance(op, Update) and op.property == "project")

        assert update.old_value == "Work"
        assert update.value is None

    def test_tag_change_touches_only_item_key(self, translator, existing):
        """Test that adding a tag never rewrites the whole collection."""
        task_id, props = existing
        props = _apply(props, translator.update(task_id, props, TaskChanges(add_tags={"a"})))

        batch = translator.update(task_id, props, TaskChanges(add_tags={"b"}, remove_tags={"a"}))
        touched = {op.property for op in batch if isinstance(op, Update)} - {"modified"}

        assert touched == {"tag_a", "tag_b"}

    def test_rediff_of_applied_change_is_empty(self, translator, existing, clock):
        """Test that re-applying an already applied change yields no operations."""
        task_id, props = existing
        changes = TaskChanges(description="New", priority=Priority.HIGH, add_tags={"x"}, udas={"size": "L"})
        props = _apply(props, translator.update(task_id, props, changes))
        clock.advance(60)

        batch = translator.update(task_id, props, changes)

        assert len(batch) == 0

    def test_untouched_properties_unchanged(self, translator, existing, clock):
        """Test that only requested properties change after applying a batch."""
        task_id, props = existing
        clock.advance()

        after = _apply(props, translator.update(task_id, props, TaskChanges(priority=Priority.LOW)))

        assert after["priority"] == "L"
        assert after["modified"] == format_timestamp(clock.now)
        for key in set(props) - {"modified"}:
            assert after[key] == props[key]

    def test_completion_sets_end_and_reopen_clears_it(self, translator, existing, clock):
        """Test status transitions maintain the end timestamp."""
        task_id, props = existing
        clock.advance()
        done = _apply(props, translator.update(task_id, props, TaskChanges(status=TaskStatus.COMPLETED)))
        assert done["end"] == format_timestamp(clock.now)

        reopened = _apply(done, translator.update(task_id, done, TaskChanges(status=TaskStatus.PENDING)))
        assert "end" not in reopened

    def test_annotations_same_second_do_not_collide(self, translator, existing):
        """Test annotation keys are bumped when added in the same second."""
        task_id, props = existing

        after = _apply(props, translator.update(task_id, props, TaskChanges(add_annotations=["one", "two"])))
        annotations = hydrate(task_id, after).annotations

        assert [a.description for a in annotations] == ["one", "two"]

    def test_remove_annotation_by_text(self, translator, existing):
        """Test removing an annotation by its text."""
        task_id, props = existing
        props = _apply(props, translator.update(task_id, props, TaskChanges(add_annotations=["keep", "drop"])))

        after = _apply(props, translator.update(task_id, props, TaskChanges(remove_annotations=["drop"])))

        assert [a.description for a in hydrate(task_id, after).annotations] == ["keep"]

    def test_update_missing_task(self, translator):
        """Test that updating an unknown task raises NotFoundError."""
        task_id = uuid4()
        with pytest.raises(NotFoundError) as exc_info:
            translator.update(task_id, None, TaskChanges(description="x"))
        assert exc_info.value.task_id == task_id

    def test_update_deleted_task_conflicts(self, translator, existing):
        """Test that editing a concurrently deleted task is a conflict."""
        task_id, props = existing
        deleted = _apply(props, translator.delete(task_id, props))

        with pytest.raises(ConflictError, match="deleted"):
            translator.update(task_id, deleted, TaskChanges(description="x"))

    def test_expected_modified_mismatch_conflicts(self, translator, existing, clock):
        """Test the optimistic precondition on the modified timestamp."""
        task_id, props = existing
        stale = clock.now
        clock.advance(5)
        props = _apply(props, translator.update(task_id, props, TaskChanges(description="changed")))

        with pytest.raises(ConflictError, match="modified"):
            translator.update(task_id, props, TaskChanges(project="Home"), expected_modified=stale)

    def test_set_and_clear_same_field_rejected(self, translator, existing):
        """Test that a field cannot be both set and cleared."""
        task_id, props = existing
        with pytest.raises(MalformedPropertyError, match="both"):
            translator.update(task_id, props, TaskChanges(project="X", clear={"project"}))

    def test_description_cannot_be_cleared(self, translator, existing):
        """Test that required fields cannot be cleared."""
        task_id, props = existing
        with pytest.raises(MalformedPropertyError, match="cleared"):
            translator.update(task_id, props, TaskChanges(clear={"description"}))


    @pytest.mark.parametrize(
        "changes,property",
        [
            (TaskChanges(priority="X"), "priority"),
            (TaskChanges(status="archived"), "status"),
        ],
    )
    def test_unknown_enum_value_is_malformed(self, translator, existing, changes, property):
        """Test that invalid priority or status values raise MalformedPropertyError."""
        task_id, props = existing
        with pytest.raises(MalformedPropertyError) as exc_info:
            translator.update(task_id, props, changes)
        assert exc_info.value.property == property
        assert not exc_info.value.transient

    def test_unknown_priority_on_create_is_malformed(self, translator):
        """Test creation validates the priority the same way."""
        with pytest.raises(MalformedPropertyError, match="priority"):
            translator.create(uuid4(), TaskChanges(description="x", priority="X"))

    def test_scheduled_and_wait_set_and_cleared(self, translator, existing):
        """Test the scheduling timestamps are settable and clearable."""
        task_id, props = existing
        scheduled = datetime(2024, 4, 1, 9, tzinfo=timezone.utc)
        wait = datetime(2024, 3, 20, tzinfo=timezone.utc)

        after = _apply(props, translator.update(task_id, props, TaskChanges(scheduled=scheduled, wait=wait)))
        task = hydrate(task_id, after)
        assert task.scheduled == scheduled
        assert task.wait == wait

        cleared = _apply(after, translator.update(task_id, after, TaskChanges(clear={"scheduled", "wait"})))
        assert "scheduled" not in cleared
        assert "wait" not in cleared

    def test_waiting_status_has_no_end(self, translator, existing, clock):
        """Test that moving a completed task to waiting clears its end."""
        task_id, props = existing
        done = _apply(props, translator.update(task_id, props, TaskChanges(status=TaskStatus.COMPLETED)))
        clock.advance()

        waiting = _apply(done, translator.update(task_id, done, TaskChanges(status=TaskStatus.WAITING)))

        assert waiting["status"] == "waiting"
        assert "end" not in waiting

class TestDelete:
    """Tests for logical delete and purge batches."""

    def test_delete_is_status_update(self, translator, existing):
        """Test that deletion flips status instead of removing the task."""
        task_id, props = existing

        batch = translator.delete(task_id, props)
        status = next(op for op in batch if isinstance(op, Update) and op.property == "status")

        assert status.old_value == "pending"
        assert status.value == "deleted"
        assert not any(isinstance(op, Delete) for op in batch)

    def test_delete_of_deleted_task_is_empty(self, translator, existing):
        """Test that deleting twice produces no second status update."""
        task_id, props = existing
        deleted = _apply(props, translator.delete(task_id, props))

        assert len(translator.delete(task_id, deleted)) == 0

    def test_delete_missing_task(self, translator):
        """Test that deleting an unknown task raises NotFoundError."""
        with pytest.raises(NotFoundError):
            translator.delete(uuid4(), None)

    def test_purge_requires_deleted_status(self, translator, existing):
        """Test that only deleted tasks can be physically removed."""
        task_id, props = existing
        with pytest.raises(ConflictError, match="purged"):
            translator.purge(task_id, props)

    def test_purge_carries_prior_snapshot(self, translator, existing):
        """Test that physical removal records the prior properties."""
        task_id, props = existing
        deleted = _apply(props, translator.delete(task_id, props))

        batch = translator.purge(task_id, deleted)

        assert batch.operations[0] == Delete(task_id, deleted)
        assert batch.operations[0].prior == deleted


class TestDiff:
    """Tests for the generic property diff."""

    def test_diff_orders_scalars_first(self, clock):
        """Test deterministic operation order."""
        task_id = uuid4()
        updates = diff(task_id, {"tag_a": ""}, {"description": "d", "tag_b": ""}, clock.now)

        assert [u.property for u in updates] == ["description", "tag_a", "tag_b"]
        assert updates[1].value is None
