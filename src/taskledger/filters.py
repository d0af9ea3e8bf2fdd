"""Filter evaluation over task snapshots.

Supports the small grammar that composed filters are built from:

    attr:value          equality (project also matches sub-projects,
                        description is a case-insensitive substring,
                        an empty value matches an absent attribute)
    attr.not:value      negated equality
    attr.before:DATE    timestamp strictly before DATE (ISO 8601)
    attr.after:DATE     timestamp strictly after DATE
    +tag / -tag         tag present / absent
    word                description contains word
    and / or            boolean operators, ``and`` binds tighter;
                        adjacent terms are joined by an implicit ``and``
    ( ... )             grouping

Anything outside this grammar raises InvalidFilterError.
"""

import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable

from taskledger.errors import InvalidFilterError, MalformedPropertyError
from taskledger.models import Task
from taskledger.translator import TIMESTAMP_KEYS, validate_uda_name

Predicate = Callable[[Task], bool]

TIMESTAMP_ATTRS = TIMESTAMP_KEYS
MODIFIERS = ("not", "before", "after")


def _always(task: Task) -> bool:
    return True


def tokenize(text: str) -> list[str]:
    """Split a filter into terms, operators and parentheses.

    Quotes group words (``project:"Home Office"``) and are removed.
    """
    lexer = shlex.shlex(text, posix=True, punctuation_chars="()")
    lexer.whitespace_split = True
    lexer.commenters = ""
    try:
        raw = list(lexer)
    except ValueError as e:
        raise InvalidFilterError(text, str(e)) from e
    tokens = []
    for token in raw:
        if token and set(token) <= {"(", ")"}:
            tokens.extend(token)
        else:
            tokens.append(token)
    return tokens


def _parse_datetime(text: str, source: str) -> datetime:
    try:
        value = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidFilterError(source, f"not an ISO date: {text!r}") from e
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _attribute(task: Task, name: str):
    if name == "uuid":
        return str(task.uuid)
    if name == "status":
        return task.status.value
    if name == "priority":
        return task.priority.value if task.priority else None
    if name == "depends":
        return {str(d) for d in task.depends}
    if name in ("description", "project") or name in TIMESTAMP_ATTRS:
        return getattr(task, name)
    return task.udas.get(name)


def _attribute_matcher(name: str, modifier: str | None, value: str, source: str) -> Predicate:
    if name in TIMESTAMP_ATTRS and modifier in ("before", "after"):
        bound = _parse_datetime(value, source)
        if modifier == "before":
            return lambda task: (ts := getattr(task, name)) is not None and ts < bound
        return lambda task: (ts := getattr(task, name)) is not None and ts > bound
    if modifier in ("before", "after"):
        raise InvalidFilterError(source, f"{modifier!r} only applies to dates")
    day = _parse_datetime(value, source).date() if name in TIMESTAMP_ATTRS and value else None

    def equals(task: Task) -> bool:
        actual = _attribute(task, name)
        if value == "":
            return actual in (None, "", set())
        if actual is None:
            return False
        if name == "project":
            return actual == value or actual.startswith(value + ".")
        if name == "description":
            return value.lower() in actual.lower()
        if name == "uuid":
            return actual.startswith(value.lower())
        if name == "depends":
            return any(dep.startswith(value.lower()) for dep in actual)
        if name in TIMESTAMP_ATTRS:
            return actual.date() == day
        return actual == value

    if modifier == "not":
        return lambda task: not equals(task)
    return equals


def compile_term(term: str, source: str) -> Predicate:
    """Compile one filter term into a predicate."""
    if term.startswith("+") and len(term) > 1:
        tag = term[1:]
        return lambda task: tag in task.tags
    if term.startswith("-") and len(term) > 1:
        tag = term[1:]
        return lambda task: tag not in task.tags
    if ":" in term:
        attr, value = term.split(":", 1)
        name, _, modifier = attr.partition(".")
        if not name or not name.replace("_", "").replace("-", "").isalnum():
            raise InvalidFilterError(source, f"bad attribute in {term!r}")
        if modifier and modifier not in MODIFIERS:
            raise InvalidFilterError(source, f"unsupported modifier {modifier!r}")
        return _attribute_matcher(name, modifier or None, value, source)
    word = term.lower()
    return lambda task: word in task.description.lower()


class _Parser:
    """Recursive-descent parser producing a predicate."""

    def __init__(self, tokens: list[str], source: str):
        self.tokens = tokens
        self.pos = 0
        self.source = source

    def peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> str:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def parse(self) -> Predicate:
        predicate = self.parse_or()
        if self.peek() is not None:
            raise InvalidFilterError(self.source, f"unexpected {self.peek()!r}")
        return predicate

    def parse_or(self) -> Predicate:
        parts = [self.parse_and()]
        while (token := self.peek()) is not None and token.lower() == "or":
            self.take()
            parts.append(self.parse_and())
        if len(parts) == 1:
            return parts[0]
        return lambda task: any(p(task) for p in parts)

    def parse_and(self) -> Predicate:
        parts = [self.parse_atom()]
        while (token := self.peek()) is not None and token != ")" and token.lower() != "or":
            if token.lower() == "and":
                self.take()
            parts.append(self.parse_atom())
        if len(parts) == 1:
            return parts[0]
        return lambda task: all(p(task) for p in parts)

    def parse_atom(self) -> Predicate:
        token = self.peek()
        if token is None:
            raise InvalidFilterError(self.source, "unexpected end of filter")
        if token == "(":
            self.take()
            inner = self.parse_or()
            if self.peek() != ")":
                raise InvalidFilterError(self.source, "unbalanced parentheses")
            self.take()
            return inner
        if token == ")" or token.lower() in ("and", "or"):
            raise InvalidFilterError(self.source, f"unexpected {token!r}")
        return compile_term(self.take(), self.source)


@lru_cache(maxsize=256)
def compile_filter(text: str | None) -> Predicate:
    """Compile a filter expression into a predicate over tasks.

    An empty or None filter matches every task.

    Raises:
        InvalidFilterError: If the expression is malformed
    """
    if not text or not text.strip():
        return _always
    tokens = tokenize(text)
    if not tokens:
        return _always
    return _Parser(tokens, text).parse()


@dataclass
class WriteDefaults:
    """Default field values seeded by a context's write filter."""

    attributes: dict[str, str] = field(default_factory=dict)
    tags: set[str] = field(default_factory=set)

    def is_empty(self) -> bool:
        return not self.attributes and not self.tags


def parse_write_filter(text: str, key: str | None = None) -> WriteDefaults:
    """Parse a write filter into the defaults it seeds.

    Only ``attr:value`` (also ``attr=value`` / ``attr==value``) and
    ``+tag`` terms, optionally joined by ``and``, are accepted, since
    anything else has no single value to assign.

    Raises:
        InvalidFilterError: If a term cannot be turned into a default
    """
    defaults = WriteDefaults()
    for token in tokenize(text):
        if token.lower() == "and":
            continue
        if token.startswith("+") and len(token) > 1:
            defaults.tags.add(token[1:])
            continue
        for separator in ("==", ":", "="):
            if separator in token:
                attr, value = token.split(separator, 1)
                break
        else:
            raise InvalidFilterError(text, f"{token!r} does not assign a value", key=key)
        value = value.strip().strip("\"'")
        if not attr or "." in attr or not value:
            raise InvalidFilterError(text, f"{token!r} does not assign a value", key=key)
        if attr not in ("project", "priority"):
            try:
                validate_uda_name(attr)
            except MalformedPropertyError as e:
                raise InvalidFilterError(text, f"{attr!r} cannot be defaulted", key=key) from e
        if attr == "priority":
            value = value.upper()
            if value not in ("H", "M", "L"):
                raise InvalidFilterError(text, f"unknown priority {value!r}", key=key)
        defaults.attributes[attr] = value
    return defaults
