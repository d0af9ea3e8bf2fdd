"""Filter composition between an explicit caller filter and the active context.

The active context is always passed in by the caller; nothing here reads
configuration or process state.
"""

from dataclasses import replace

from taskledger.filters import parse_write_filter
from taskledger.models import FilterMode, FilterPurpose, Priority, TaskChanges, UserContext


def _is_blank(text: str | None) -> bool:
    return text is None or not text.strip()


def compose(
    explicit_filter: str | None,
    mode: FilterMode,
    active_context: UserContext | None,
    purpose: FilterPurpose,
) -> str:
    """Combine an explicit filter with the active context's filter.

    With no active context, or ``FilterMode.IGNORE_CONTEXT``, the explicit
    filter is returned unchanged (``""`` when absent). For reads, each
    non-empty side is parenthesized and the two are joined with ``AND``,
    context first. For writes, the context's write filter (or ``""``) is
    returned; it only supplies defaults, see ``apply_write_defaults``.

    Contradictory clauses are emitted as-is: they simply match nothing.

    Example:
        compose("project:A", FilterMode.COMBINE_WITH_CONTEXT,
                UserContext("work", "project:B"), FilterPurpose.READ)
        # -> "(project:B) AND (project:A)"
    """
    explicit = explicit_filter or ""
    if active_context is None or FilterMode(mode) == FilterMode.IGNORE_CONTEXT:
        return explicit

    if FilterPurpose(purpose) == FilterPurpose.WRITE:
        return active_context.write_filter or ""

    clauses = [
        f"({side})"
        for side in (active_context.read_filter, explicit)
        if not _is_blank(side)
    ]
    return " AND ".join(clauses)


def apply_write_defaults(
    changes: TaskChanges,
    mode: FilterMode,
    active_context: UserContext | None,
) -> TaskChanges:
    """Seed unset fields of a new task from the context's write filter.

    Only meant for task creation. Values the caller set or cleared
    explicitly are never overridden; default tags are added to the
    caller's tags unless the caller removes them.

    Raises:
        InvalidFilterError: If the write filter cannot be read as defaults
    """
    write_filter = compose(None, mode, active_context, FilterPurpose.WRITE)
    if _is_blank(write_filter):
        return changes

    key = f"context.{active_context.name}.write" if active_context else None
    defaults = parse_write_filter(write_filter, key=key)

    seeded: dict = {}
    udas = dict(changes.udas)
    for attr, value in defaults.attributes.items():
        if changes.is_specified(attr):
            continue
        if attr == "project":
            seeded["project"] = value
        elif attr == "priority":
            seeded["priority"] = Priority(value)
        else:
            udas[attr] = value

    tags = set(changes.add_tags) | (defaults.tags - set(changes.remove_tags))
    return replace(changes, add_tags=tags, udas=udas, **seeded)
