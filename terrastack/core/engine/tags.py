"""
Tag filter — boolean tag expressions evaluated against a stack's tags.

Public grammar (``--tags`` / ``--no-tags`` flags and ``tag:`` queries):

    --tags a,b          a AND b
    --tags a --tags b   a OR b
    --no-tags c,d       NOT c AND NOT d

Negation is represented internally as a ``NEQ`` clause.  The ``~``
prefix that stands for it is never accepted from user input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from terrastack.core.errors import TagFilterError

TAG_PATTERN = re.compile(r"^[a-z](?:[a-z0-9_-])*$")

AND_SYMBOL = ","


class Operation(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    AND = "and"
    OR = "or"


@dataclass(frozen=True)
class TagClause:
    """A node of the tag-expression tree.

    Leaves (``EQ``/``NEQ``) carry a tag name, branches (``AND``/``OR``)
    carry children.
    """

    op: Operation
    tag: str = ""
    children: tuple[TagClause, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        if self.op is Operation.EQ:
            return self.tag
        if self.op is Operation.NEQ:
            return f"~{self.tag}"
        joiner = " && " if self.op is Operation.AND else " || "
        return "(" + joiner.join(str(c) for c in self.children) + ")"


def validate_tag(tag: str) -> None:
    """Raise TagFilterError unless ``tag`` is a valid tag identifier."""
    if not TAG_PATTERN.match(tag):
        raise TagFilterError(
            f"invalid tag {tag!r}: tags must match {TAG_PATTERN.pattern}"
        )


def parse_tag_expression(expr: str) -> TagClause:
    """Parse one ``a,b,c`` expression into an AND clause (or a single leaf)."""
    names = [t.strip() for t in expr.split(AND_SYMBOL)]
    for name in names:
        validate_tag(name)

    leaves = tuple(TagClause(op=Operation.EQ, tag=name) for name in names)
    if len(leaves) == 1:
        return leaves[0]
    return TagClause(op=Operation.AND, children=leaves)


def parse_tag_filters(
    tags: list[str] | tuple[str, ...] = (),
    no_tags: list[str] | tuple[str, ...] = (),
) -> TagClause | None:
    """Build the filter clause from repeated ``--tags``/``--no-tags`` values.

    Returns None when no filter was given (every stack matches).
    """
    positive = [parse_tag_expression(expr) for expr in tags if expr]

    negated: list[TagClause] = []
    for expr in no_tags:
        if not expr:
            continue
        for name in (t.strip() for t in expr.split(AND_SYMBOL)):
            validate_tag(name)
            negated.append(TagClause(op=Operation.NEQ, tag=name))

    clauses: list[TagClause] = []
    if len(positive) == 1:
        clauses.append(positive[0])
    elif positive:
        clauses.append(TagClause(op=Operation.OR, children=tuple(positive)))
    clauses.extend(negated)

    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return TagClause(op=Operation.AND, children=tuple(clauses))


def match_tags(clause: TagClause | None, tags: list[str] | tuple[str, ...]) -> bool:
    """Tell whether ``tags`` satisfy ``clause``.  A None clause matches everything."""
    if clause is None:
        return True

    index = set(tags)
    return _match(clause, index)


def _match(clause: TagClause, index: set[str]) -> bool:
    if clause.op is Operation.EQ:
        return clause.tag in index
    if clause.op is Operation.NEQ:
        return clause.tag not in index
    if clause.op is Operation.OR:
        return any(_match(c, index) for c in clause.children)
    return all(_match(c, index) for c in clause.children)
