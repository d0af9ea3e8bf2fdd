"""Tests for filter composition."""

import pytest

from taskledger.composer import apply_write_defaults, compose
from taskledger.errors import InvalidFilterError
from taskledger.models import FilterMode, FilterPurpose, Priority, TaskChanges, UserContext

COMBINE = FilterMode.COMBINE_WITH_CONTEXT
IGNORE = FilterMode.IGNORE_CONTEXT
READ = FilterPurpose.READ
WRITE = FilterPurpose.WRITE

WORK = UserContext("work", "project:Work", "project:WorkInbox", active=True)


class TestCompose:
    """Tests for compose()."""

    def test_no_filter_no_context(self):
        """Test that nothing composes to the empty filter."""
        assert compose(None, COMBINE, None, READ) == ""

    @pytest.mark.parametrize("explicit", ["", "status:pending", "project:A or +x"])
    def test_ignore_context_returns_explicit(self, explicit):
        """Test that IgnoreContext passes the explicit filter through."""
        assert compose(explicit, IGNORE, WORK, READ) == explicit

    def test_no_context_returns_explicit(self):
        """Test that without a context the explicit filter is unchanged."""
        assert compose("status:pending", COMBINE, None, READ) == "status:pending"

    def test_read_combines_with_parentheses(self):
        """Test context-first AND composition."""
        ctx = UserContext("b", "project:B")
        assert compose("project:A", COMBINE, ctx, READ) == "(project:B) AND (project:A)"

    def test_read_preserves_grouping(self):
        """Test that each side is parenthesized regardless of its operators."""
        ctx = UserContext("home", "project:Home or +family")
        assert compose("+urgent", COMBINE, ctx, READ) == "(project:Home or +family) AND (+urgent)"

    def test_read_omits_empty_explicit(self):
        """Test that an absent explicit filter leaves only the context clause."""
        assert compose(None, COMBINE, WORK, READ) == "(project:Work)"
        assert compose("  ", COMBINE, WORK, READ) == "(project:Work)"

    def test_write_returns_write_filter(self):
        """Test write purpose yields the context's write filter."""
        assert compose(None, COMBINE, WORK, WRITE) == "project:WorkInbox"
        assert compose(None, COMBINE, UserContext("r", "project:R"), WRITE) == ""
        assert compose(None, IGNORE, WORK, WRITE) == ""


class TestApplyWriteDefaults:
    """Tests for seeding new tasks from write filters."""

    def test_seeds_unset_project(self):
        """Test that a missing project is filled from the write filter."""
        changes = apply_write_defaults(TaskChanges(description="x"), COMBINE, WORK)
        assert changes.project == "WorkInbox"

    def test_explicit_value_wins(self):
        """Test that an explicit project is never overridden."""
        changes = apply_write_defaults(TaskChanges(description="x", project="Mine"), COMBINE, WORK)
        assert changes.project == "Mine"

    def test_explicit_clear_wins(self):
        """Test that an explicitly cleared project stays cleared."""
        changes = apply_write_defaults(TaskChanges(description="x", clear={"project"}), COMBINE, WORK)
        assert changes.project is None

    def test_ignore_context_seeds_nothing(self):
        """Test that IgnoreContext leaves the changes untouched."""
        original = TaskChanges(description="x")
        assert apply_write_defaults(original, IGNORE, WORK) == original

    def test_tags_priority_and_udas(self):
        """Test defaults for tags, priority and user attributes."""
        ctx = UserContext("c", "+work", "+work priority:M size:S")
        changes = apply_write_defaults(TaskChanges(description="x", add_tags={"mine"}), COMBINE, ctx)

        assert changes.add_tags == {"work", "mine"}
        assert changes.priority == Priority.MEDIUM
        assert changes.udas == {"size": "S"}

    def test_caller_tag_removal_respected(self):
        """Test that a default tag the caller removes is not added."""
        ctx = UserContext("c", "+work", "+work")
        changes = apply_write_defaults(TaskChanges(description="x", remove_tags={"work"}), COMBINE, ctx)
        assert "work" not in changes.add_tags

    def test_unusable_write_filter(self):
        """Test that a write filter with no assignable value is rejected."""
        ctx = UserContext("c", "+x", "-x")
        with pytest.raises(InvalidFilterError) as exc_info:
            apply_write_defaults(TaskChanges(description="x"), COMBINE, ctx)
        assert exc_info.value.key == "context.c.write"
