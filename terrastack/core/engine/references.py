"""
Stack references — the entries of ``after``, ``before``, ``wants`` and
``wanted_by``.

A reference is either a path (``/infra/vpc`` from the project root,
``../vpc`` relative to the declaring stack) or a tag query
(``tag:prod,network``).  A path resolves to the stack at that path plus
every stack beneath it; a tag query to every stack matching it.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from terrastack.core.engine.tags import TagClause, match_tags, parse_tag_expression
from terrastack.core.errors import StackConfigError, TagFilterError
from terrastack.core.models.stack import Stack

if TYPE_CHECKING:
    from terrastack.core.config.stack_loader import StackRegistry

logger = logging.getLogger(__name__)

TAG_QUERY_PREFIX = "tag:"

# Fields where a tag query is meaningful
TAG_QUERY_FIELDS = frozenset({"after", "before"})


@dataclass(frozen=True)
class PathRef:
    path: str           # as written in the declaration

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class TagQueryRef:
    query: str
    clause: TagClause

    def __str__(self) -> str:
        return TAG_QUERY_PREFIX + self.query


Reference = Union[PathRef, TagQueryRef]


def parse_reference(field: str, value: str) -> Reference:
    """Parse one reference string found in ``field``.

    Raises:
        StackConfigError: For a tag query outside ``after``/``before``,
            an invalid tag query or an empty entry.
    """
    if not value:
        raise StackConfigError(f"empty reference in {field!r}")

    if not value.startswith(TAG_QUERY_PREFIX):
        return PathRef(value)

    if field not in TAG_QUERY_FIELDS:
        raise StackConfigError(f"tag:<query> is not allowed in {field!r} field: {value!r}")

    query = value[len(TAG_QUERY_PREFIX):]
    try:
        clause = parse_tag_expression(query)
    except TagFilterError as e:
        raise StackConfigError(f"invalid {field} entry {value!r}: {e}") from e
    return TagQueryRef(query=query, clause=clause)


def resolve_reference(
    ref: Reference,
    stack: Stack,
    registry: StackRegistry,
    tag_scope: list[Stack] | None = None,
) -> list[Stack]:
    """Resolve a reference declared by ``stack`` into stacks.

    Path references resolve against the whole registry.  Tag queries
    match within ``tag_scope`` (default: the whole registry).  A
    reference that matches nothing resolves to an empty list.
    """
    if isinstance(ref, TagQueryRef):
        candidates = registry.stacks if tag_scope is None else tag_scope
        found = [s for s in candidates if match_tags(ref.clause, s.tags)]
    else:
        target = _target_path(ref.path, stack.path)
        if target is None:
            logger.warning("stack %s: reference %r escapes the project root - ignoring", stack, str(ref))
            return []
        if not registry.root.joinpath(target.lstrip("/")).is_dir():
            logger.warning("stack %s: reference %r is not a directory - ignoring", stack, str(ref))
            return []
        found = registry.stacks_under(target)

    if not found:
        logger.debug("stack %s: reference %r matches no stack", stack, str(ref))
    return found


def resolve_field(
    field: str,
    stack: Stack,
    registry: StackRegistry,
    tag_scope: list[Stack] | None = None,
) -> list[Stack]:
    """Resolve every reference of ``stack.<field>``, deduplicated and sorted."""
    found: dict[str, Stack] = {}
    for value in getattr(stack, field):
        ref = parse_reference(field, value)
        for target in resolve_reference(ref, stack, registry, tag_scope):
            found[target.path] = target
    return [found[p] for p in sorted(found)]


def _target_path(ref: str, base: str) -> str | None:
    if ref.startswith("/"):
        rel = posixpath.normpath(ref.lstrip("/") or ".")
    else:
        rel = posixpath.normpath(posixpath.join(base.lstrip("/"), ref))
    if rel == ".." or rel.startswith("../"):
        return None
    return "/" if rel == "." else "/" + rel
