"""Context resolver: named read/write filters from the taskrc file.

Configuration keys:
    context = <name>                       active context
    context.<name> = <read filter>         (or context.<name>.read)
    context.<name>.write = <write filter>  optional

The resolver starts undiscovered and becomes discovered on the first
``discover()``. It re-reads the file whenever it changes, so the active
context is always resolved at call time.
"""

from typing import Literal

from taskledger.config import TaskLedgerSettings, get_settings
from taskledger.errors import InvalidFilterError, UndefinedContextError
from taskledger.filters import parse_write_filter
from taskledger.logging import Loggers
from taskledger.models import UserContext
from taskledger.replica import FileStamp
from taskledger.taskrc import Taskrc

logger = Loggers.context()

ACTIVE_KEY = "context"
PREFIX = "context."

UndefinedPolicy = Literal["error", "clear"]


def parse_contexts(settings: dict[str, str]) -> dict[str, UserContext]:
    """Collect context definitions from taskrc settings.

    Raises:
        InvalidFilterError: If a read filter is empty or a write filter
            cannot be read as field defaults
    """
    reads: dict[str, tuple[str, str]] = {}
    writes: dict[str, tuple[str, str]] = {}
    for key, value in settings.items():
        if not key.startswith(PREFIX):
            continue
        rest = key[len(PREFIX):]
        if rest.endswith(".write"):
            writes[rest[: -len(".write")]] = (key, value)
        elif rest.endswith(".read"):
            reads[rest[: -len(".read")]] = (key, value)
        elif "." not in rest:
            # context.<name>.read wins over the older context.<name> form
            reads.setdefault(rest, (key, value))

    contexts = {}
    for name in sorted(set(reads) | set(writes)):
        if not name:
            continue
        key, read_filter = reads.get(name, (f"{PREFIX}{name}", ""))
        if not read_filter.strip():
            raise InvalidFilterError(read_filter, "read filter must not be empty", key=key)
        write_filter = None
        if name in writes:
            write_key, write_filter = writes[name]
            write_filter = write_filter.strip() or None
            if write_filter:
                parse_write_filter(write_filter, key=write_key)
        contexts[name] = UserContext(name=name, read_filter=read_filter, write_filter=write_filter)
    return contexts


class ContextResolver:
    """Discovers, lists and switches the active context.

    ``policy`` decides what happens when the active name has no
    definition: ``"error"`` raises UndefinedContextError, ``"clear"``
    removes the active pointer from the file and continues without one.

    Example:
        resolver = ContextResolver(Taskrc(Path("~/.taskrc")))
        resolver.set("work")
        resolver.show()  # UserContext(name="work", ..., active=True)
    """

    def __init__(self, taskrc: Taskrc, policy: UndefinedPolicy = "error"):
        self.taskrc = taskrc
        self.policy = policy
        self._contexts: dict[str, UserContext] | None = None
        self._active: UserContext | None = None
        self._stamp: FileStamp | None = None

    @classmethod
    def from_settings(cls, settings: TaskLedgerSettings | None = None) -> "ContextResolver":
        settings = settings or get_settings()
        return cls(
            Taskrc(settings.taskrc_path, lock_timeout=settings.lock_timeout),
            policy=settings.undefined_context_policy,
        )

    @property
    def discovered(self) -> bool:
        return self._contexts is not None

    def _definitions(self) -> tuple[dict[str, UserContext], str | None]:
        settings = self.taskrc.read()
        return parse_contexts(settings), settings.get(ACTIVE_KEY) or None

    def discover(self) -> UserContext | None:
        """Read the configuration and resolve the active context.

        Raises:
            UndefinedContextError: If the active name is undefined and the
                policy is ``"error"``
            InvalidFilterError: If a context definition is malformed
        """
        stamp = self.taskrc.stamp()
        contexts, name = self._definitions()
        if name is not None and name not in contexts:
            if self.policy != "clear":
                raise UndefinedContextError(name)
            logger.warning("undefined_context_cleared", name=name, path=str(self.taskrc.path))
            self._clear_active()
            stamp = self.taskrc.stamp()
            name = None

        active = None
        if name is not None:
            active = UserContext(
                name=name,
                read_filter=contexts[name].read_filter,
                write_filter=contexts[name].write_filter,
                active=True,
            )
            contexts[name] = active
        self._contexts, self._active, self._stamp = contexts, active, stamp
        return active

    def current(self) -> UserContext | None:
        """Active context, re-discovering if the file changed since last read."""
        if not self.discovered or self.taskrc.stamp() != self._stamp:
            return self.discover()
        return self._active

    def list(self) -> list[UserContext]:
        """All defined contexts, by name, with the active one flagged."""
        contexts, name = self._definitions()
        return [
            UserContext(c.name, c.read_filter, c.write_filter, active=c.name == name)
            for c in contexts.values()
        ]

    def show(self) -> UserContext | None:
        """The active context, if any."""
        return self.current()

    def set(self, name: str) -> UserContext:
        """Make ``name`` the active context and persist it.

        Raises:
            UndefinedContextError: If ``name`` has no definition; the
                previously active context is left unchanged
        """
        contexts, _ = self._definitions()
        if name not in contexts:
            raise UndefinedContextError(name)
        self.taskrc.set_value(ACTIVE_KEY, name)
        logger.info("context_activated", name=name)
        return self.discover()

    def clear(self) -> None:
        """Deactivate the active context; a no-op when none is active."""
        if self.taskrc.read().get(ACTIVE_KEY):
            self._clear_active()
            logger.info("context_cleared")
        self._active = None
        self._contexts = None

    def _clear_active(self) -> None:
        """Remove the active pointer from the main file.

        An included file may still name a context, in which case an empty
        ``context=`` line is written to override it.
        """
        self.taskrc.set_value(ACTIVE_KEY, None)
        if self.taskrc.read().get(ACTIVE_KEY):
            self.taskrc.set_value(ACTIVE_KEY, "")
