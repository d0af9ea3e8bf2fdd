"""Tests for task value types."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from taskledger.models import (
    Annotation,
    Priority,
    Task,
    TaskChanges,
    TaskStatus,
    UserContext,
)


class TestTaskChanges:
    """Tests for TaskChanges."""

    def test_empty(self):
        assert TaskChanges().is_empty()
        assert not TaskChanges(add_tags={"x"}).is_empty()
        assert not TaskChanges(clear={"due"}).is_empty()

    @pytest.mark.parametrize(
        "changes,name,expected",
        [
            (TaskChanges(project="A"), "project", True),
            (TaskChanges(clear={"project"}), "project", True),
            (TaskChanges(), "project", False),
            (TaskChanges(udas={"size": "S"}), "size", True),
            (TaskChanges(add_tags={"size"}), "size", False),
            (TaskChanges(wait=datetime(2024, 1, 1, tzinfo=timezone.utc)), "wait", True),
            (TaskChanges(clear={"scheduled"}), "scheduled", True),
        ],
    )
    def test_is_specified(self, changes, name, expected):
        """Test explicit values and clears count as specified."""
        assert changes.is_specified(name) is expected


class TestTask:
    """Tests for Task."""

    def test_dict_round_trip(self):
        """Test to_dict/from_dict preserve every field."""
        entry = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
        task = Task(
            uuid=uuid4(),
            description="write report",
            status=TaskStatus.COMPLETED,
            entry=entry,
            end=entry,
            scheduled=entry,
            wait=entry,
            project="Work",
            priority=Priority.HIGH,
            tags={"b", "a"},
            annotations=[Annotation(entry, "draft sent")],
            depends={uuid4()},
            udas={"size": "L"},
            display_id=4,
        )

        data = task.to_dict()
        restored = Task.from_dict(data)

        assert data["tags"] == ["a", "b"]
        assert restored == task
        assert restored.display_id == 4

    def test_display_id_not_compared(self):
        """Test the transient index is not part of equality."""
        task_id = uuid4()
        assert Task(task_id, "x", display_id=1) == Task(task_id, "x", display_id=2)

    def test_unknown_status_falls_back(self):
        """Test from_dict tolerates unknown enum values."""
        task = Task.from_dict({"uuid": str(uuid4()), "description": "x", "status": "recurring", "priority": "Z"})
        assert task.status == TaskStatus.PENDING
        assert task.priority is None


class TestEnums:
    """Tests for enum helpers."""

    def test_priority_rank(self):
        assert sorted(Priority, key=lambda p: p.rank) == [Priority.HIGH, Priority.MEDIUM, Priority.LOW]

    def test_user_context_is_frozen(self):
        ctx = UserContext("work", "project:Work")
        with pytest.raises(AttributeError):
            ctx.name = "home"
