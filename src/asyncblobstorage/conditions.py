"""Conditional-request predicates.

``BlobConditions`` carries the HTTP-style time and ETag predicates.
``RequestConditions`` adds a lease id and a tag-query expression. Backends
evaluate every predicate that is present. Absent predicates impose nothing.

Tag queries use the SQL-like syntax of blob index tags::

    "status" = 'done' AND ("tier" = 'hot' OR "size" >= '100')
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from .errors import PreconditionFailedError

ETAG_ANY = "*"


@dataclass(frozen=True)
class BlobConditions:
    if_modified_since: datetime | None = None
    if_unmodified_since: datetime | None = None
    if_match: str | None = None
    if_none_match: str | None = None


@dataclass(frozen=True)
class RequestConditions(BlobConditions):
    lease_id: str | None = None
    tag_conditions: str | None = None


def check_conditions(
    conditions: BlobConditions | None,
    *,
    exists: bool,
    etag: str | None = None,
    last_modified: datetime | None = None,
    tags: Mapping[str, str] | None = None,
) -> None:
    """Raise PreconditionFailedError unless every present predicate holds.

    The lease predicate is not evaluated here; backends check it against
    their lease table.
    """
    if conditions is None:
        return

    if conditions.if_match is not None:
        if not exists:
            raise PreconditionFailedError("If-Match given but the blob does not exist")
        if conditions.if_match != ETAG_ANY and conditions.if_match != etag:
            raise PreconditionFailedError(
                f"ETag mismatch: expected {conditions.if_match}, current {etag}"
            )

    if conditions.if_none_match is not None and exists:
        if conditions.if_none_match == ETAG_ANY:
            raise PreconditionFailedError("If-None-Match '*' but the blob exists")
        if conditions.if_none_match == etag:
            raise PreconditionFailedError(f"ETag {etag} matches If-None-Match")

    if exists and last_modified is not None:
        if (
            conditions.if_modified_since is not None
            and not last_modified > conditions.if_modified_since
        ):
            raise PreconditionFailedError("Blob has not been modified since the given time")
        if (
            conditions.if_unmodified_since is not None
            and last_modified > conditions.if_unmodified_since
        ):
            raise PreconditionFailedError("Blob has been modified since the given time")

    tag_expr = getattr(conditions, "tag_conditions", None)
    if tag_expr:
        if not exists or not TagQuery.parse(tag_expr).matches(tags or {}):
            raise PreconditionFailedError(f"Tag condition not met: {tag_expr}")


# -- Tag query expressions ------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<lparen>\()
      | (?P<rparen>\))
      | (?P<op><>|>=|<=|=|>|<)
      | "(?P<qkey>[^"]*)"
      | '(?P<value>(?:[^']|'')*)'
      | (?P<word>[A-Za-z0-9_.:/+\-]+)
    )""",
    re.VERBOSE,
)

_COMPARATORS = {
    "=": lambda a, b: a == b,
    "<>": lambda a, b: a != b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
}


def _tokenize(expr: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    expr = expr.rstrip()
    while pos < len(expr):
        m = _TOKEN_RE.match(expr, pos)
        if m is None or m.end() == pos:
            raise ValueError(f"Invalid tag condition near position {pos}: {expr!r}")
        kind = m.lastgroup
        text = m.group(kind)
        if kind == "value":
            text = text.replace("''", "'")
        elif kind == "word" and text.upper() in ("AND", "OR"):
            kind, text = "bool", text.upper()
        elif kind in ("word", "qkey"):
            kind = "key"
        tokens.append((kind, text))
        pos = m.end()
    return tokens


class TagQuery:
    """A parsed tag-query expression, evaluated against a tag mapping."""

    def __init__(self, tree) -> None:
        self._tree = tree

    @classmethod
    def parse(cls, expr: str) -> "TagQuery":
        tokens = _tokenize(expr)
        if not tokens:
            raise ValueError("Empty tag condition")
        parser = _Parser(tokens)
        tree = parser.parse_or()
        if parser.pos != len(tokens):
            raise ValueError(f"Unexpected token {tokens[parser.pos][1]!r} in {expr!r}")
        return cls(tree)

    def matches(self, tags: Mapping[str, str]) -> bool:
        return _evaluate(self._tree, tags)


class _Parser:
    def __init__(self, tokens: list[tuple[str, str]]) -> None:
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self, kind: str) -> str:
        tok = self._peek()
        if tok is None or tok[0] != kind:
            found = "end of expression" if tok is None else repr(tok[1])
            raise ValueError(f"Expected {kind} in tag condition, found {found}")
        self.pos += 1
        return tok[1]

    def parse_or(self):
        node = self.parse_and()
        while self._peek() == ("bool", "OR"):
            self.pos += 1
            node = ("or", node, self.parse_and())
        return node

    def parse_and(self):
        node = self.parse_factor()
        while self._peek() == ("bool", "AND"):
            self.pos += 1
            node = ("and", node, self.parse_factor())
        return node

    def parse_factor(self):
        tok = self._peek()
        if tok is not None and tok[0] == "lparen":
            self.pos += 1
            node = self.parse_or()
            self._take("rparen")
            return node
        key = self._take("key")
        op = self._take("op")
        value = self._take("value")
        return ("cmp", key, op, value)


def _evaluate(node, tags: Mapping[str, str]) -> bool:
    kind = node[0]
    if kind == "and":
        return _evaluate(node[1], tags) and _evaluate(node[2], tags)
    if kind == "or":
        return _evaluate(node[1], tags) or _evaluate(node[2], tags)
    _, key, op, value = node
    if key not in tags:
        return False
    return _COMPARATORS[op](tags[key], value)
