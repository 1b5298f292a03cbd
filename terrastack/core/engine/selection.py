"""
Stack selection — narrows the registry to the stacks a command acts on.

Pipeline::

    working dir  ->  changed  ->  tags  ->  wants / wanted_by expansion

Filters only apply to the initial selection: a stack pulled in through
``wants``/``wanted_by`` is kept even if it is unchanged or does not
match the tag filter.
"""

from __future__ import annotations

import logging
from collections import deque

from terrastack.core.config.stack_loader import StackRegistry
from terrastack.core.engine.references import resolve_field
from terrastack.core.engine.tags import TagClause, match_tags
from terrastack.core.errors import MissingStackIDError, TerrastackError
from terrastack.core.models.stack import Stack, is_subpath

logger = logging.getLogger(__name__)


def expand_wanted(
    initial: list[Stack],
    registry: StackRegistry,
    recursive: bool = True,
) -> list[Stack]:
    """Grow ``initial`` with the stacks it wants, and the stacks wanting it.

    For every stack S taken from the worklist, the stacks referenced by
    ``S.wants`` are added, as is every stack of the registry whose
    ``wanted_by`` resolves to S.  Newly added stacks are expanded in
    turn only when ``recursive``.

    Returns:
        The expanded selection, sorted by path.
    """
    wanted_by = _wanted_by_index(registry)

    selected: dict[str, Stack] = {s.path: s for s in initial}
    pending = deque(sorted(selected.values(), key=lambda s: s.path))

    while pending:
        stack = pending.popleft()

        found = resolve_field("wants", stack, registry) + wanted_by.get(stack.path, [])
        for other in found:
            if other.path in selected:
                continue
            logger.debug("stack %s added to the selection: wanted by %s", other, stack)
            selected[other.path] = other
            if recursive:
                pending.append(other)

    return [selected[p] for p in sorted(selected)]


def _wanted_by_index(registry: StackRegistry) -> dict[str, list[Stack]]:
    """Map each stack path to the stacks declaring it in ``wanted_by``."""
    index: dict[str, list[Stack]] = {}
    for stack in registry:
        if not stack.wanted_by:
            continue
        for target in resolve_field("wanted_by", stack, registry):
            index.setdefault(target.path, []).append(stack)
    return index


def filter_by_working_dir(stacks: list[Stack], working_dir: str, recursive: bool = True) -> list[Stack]:
    """Stacks at or below ``working_dir`` (only the one at it when not recursive)."""
    if not recursive:
        return [s for s in stacks if s.path == working_dir]
    return [s for s in stacks if is_subpath(s.path, working_dir)]


def select_stacks(
    registry: StackRegistry,
    working_dir: str = "/",
    tags: TagClause | None = None,
    changed: set[str] | None = None,
    recursive: bool = True,
) -> list[Stack]:
    """Run the whole selection pipeline.

    Args:
        registry: All stacks of the project.
        working_dir: Project-absolute directory the command runs from.
        tags: Tag filter clause (None matches everything).
        changed: Paths of changed stacks, or None when change
            detection is off.
        recursive: False restricts the selection to the stack at
            ``working_dir`` and expands its wants one level.

    Raises:
        TerrastackError: When not recursive and ``working_dir`` holds
            no stack.
    """
    stacks = filter_by_working_dir(registry.stacks, working_dir, recursive)
    if not recursive and not stacks:
        raise TerrastackError(f"--no-recursive given but {working_dir} is not a stack")

    if changed is not None:
        stacks = [s for s in stacks if s.path in changed]

    stacks = [s for s in stacks if match_tags(tags, s.tags)]

    logger.debug("Initial selection: %s", [s.path for s in stacks])
    return expand_wanted(stacks, registry, recursive=recursive)


def check_stack_ids(stacks: list[Stack], automation: bool = False) -> list[Stack]:
    """Make sure every stack of the batch declares an ``id``.

    In automation mode the stacks without one are dropped with a
    warning; otherwise the whole batch is rejected.

    Raises:
        MissingStackIDError: Listing every offending stack path.
    """
    missing = [s.path for s in stacks if not s.id]
    if not missing:
        return stacks

    if not automation:
        raise MissingStackIDError(missing)

    for path in missing:
        logger.warning("stack %s has no id and is skipped", path)
    return [s for s in stacks if s.id]
