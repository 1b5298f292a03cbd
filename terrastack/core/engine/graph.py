"""
Dependency graph — ordering constraints between stacks.

An edge ``u -> v`` means "v runs before u".  The graph is built fresh
for every invocation from the selected stacks:

    1. one node per selected stack
    2. implicit edges: a nested stack runs after its enclosing stacks
    3. ``after`` / ``before`` references
    4. ``wants`` / ``wanted_by`` between selected stacks, skipped when
       they would close a loop

Stacks reached through ``after``/``before`` that are not selected are
added as auxiliary nodes so that transitive constraints still hold;
they are never part of the run order.

The implicit edges are inserted before the explicit ones so that a
single cycle check covers both.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Callable

from terrastack.core.config.stack_loader import StackRegistry
from terrastack.core.engine.references import resolve_field
from terrastack.core.errors import CycleError
from terrastack.core.models.stack import Stack

logger = logging.getLogger(__name__)


class _State(Enum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


class DependencyGraph:
    """Stacks and their run-before constraints, keyed by stack path."""

    def __init__(self) -> None:
        self.nodes: dict[str, Stack] = {}
        self.selected: set[str] = set()
        self._deps: dict[str, set[str]] = {}

    def add_node(self, stack: Stack, selected: bool = False) -> None:
        if stack.path not in self.nodes:
            self.nodes[stack.path] = stack
            self._deps[stack.path] = set()
        if selected:
            self.selected.add(stack.path)

    def add_edge(self, stack: str, dependency: str) -> None:
        """Record that ``dependency`` runs before ``stack``."""
        if stack not in self.nodes or dependency not in self.nodes:
            raise KeyError(f"unknown node in edge {stack} -> {dependency}")
        self._deps[stack].add(dependency)

    def dependencies(self, path: str) -> list[str]:
        """Stacks that must run before ``path``, sorted."""
        return sorted(self._deps[path])

    def edges(self) -> list[tuple[str, str]]:
        return [(u, v) for u in sorted(self.nodes) for v in self.dependencies(u)]

    def reaches(self, start: str, goal: str) -> bool:
        """Whether ``goal`` must run before ``start`` (directly or transitively)."""
        seen: set[str] = set()
        pending = [start]
        while pending:
            node = pending.pop()
            if node == goal:
                return True
            if node in seen:
                continue
            seen.add(node)
            pending.extend(self._deps[node])
        return False

    def is_auxiliary(self, path: str) -> bool:
        return path not in self.selected

    # ── Cycle detection ─────────────────────────────────────────

    def validate(self) -> None:
        """Raise CycleError with the first loop found, if any.

        Nodes and dependencies are walked in path order, so the same
        graph always reports the same loop.
        """
        state = {path: _State.UNVISITED for path in self.nodes}
        stack_path: list[str] = []

        def visit(node: str) -> None:
            state[node] = _State.IN_PROGRESS
            stack_path.append(node)
            for dep in self.dependencies(node):
                if state[dep] is _State.IN_PROGRESS:
                    loop = stack_path[stack_path.index(dep):] + [dep]
                    raise CycleError(loop)
                if state[dep] is _State.UNVISITED:
                    visit(dep)
            stack_path.pop()
            state[node] = _State.DONE

        for node in sorted(self.nodes):
            if state[node] is _State.UNVISITED:
                visit(node)

    def back_edges(self) -> set[tuple[str, str]]:
        """Edges that close a cycle in the same DFS ``validate`` uses."""
        state = {path: _State.UNVISITED for path in self.nodes}
        found: set[tuple[str, str]] = set()

        def visit(node: str) -> None:
            state[node] = _State.IN_PROGRESS
            for dep in self.dependencies(node):
                if state[dep] is _State.IN_PROGRESS:
                    found.add((node, dep))
                elif state[dep] is _State.UNVISITED:
                    visit(dep)
            state[node] = _State.DONE

        for node in sorted(self.nodes):
            if state[node] is _State.UNVISITED:
                visit(node)
        return found

    # ── Topological order ───────────────────────────────────────

    def order(self) -> list[str]:
        """All nodes, dependencies first, ties broken by path.

        Call ``validate`` first: on a cyclic graph the result is not a
        valid order.
        """
        visited: set[str] = set()
        result: list[str] = []

        def visit(node: str) -> None:
            visited.add(node)
            for dep in self.dependencies(node):
                if dep not in visited:
                    visit(dep)
            result.append(node)

        for node in sorted(self.nodes):
            if node not in visited:
                visit(node)
        return result


def build_graph(selected: list[Stack], registry: StackRegistry) -> DependencyGraph:
    """Build the dependency graph over ``selected``.

    Raises:
        StackConfigError: If a reference is invalid (e.g. a tag query in
            ``wants``).
    """
    graph = DependencyGraph()
    selected = sorted(selected, key=lambda s: s.path)
    for stack in selected:
        graph.add_node(stack, selected=True)

    # ── Implicit parent/child ordering ──────────────────────────
    for stack in selected:
        for other in selected:
            if stack.is_inside(other):
                logger.debug("stack %s runs before %s since it is its parent", other, stack)
                graph.add_edge(stack.path, other.path)

    # ── after / before, following non-selected stacks ───────────
    pending = deque(selected)
    visited: set[str] = set()
    while pending:
        stack = pending.popleft()
        if stack.path in visited:
            continue
        visited.add(stack.path)

        for target in resolve_field("after", stack, registry, tag_scope=selected):
            graph.add_node(target)
            graph.add_edge(stack.path, target.path)
            pending.append(target)

        for target in resolve_field("before", stack, registry, tag_scope=selected):
            graph.add_node(target)
            graph.add_edge(target.path, stack.path)
            pending.append(target)

    # ── wants / wanted_by between selected stacks ───────────────
    for stack in selected:
        for target in resolve_field("wants", stack, registry):
            _add_wants_edge(graph, stack.path, target.path)
        for target in resolve_field("wanted_by", stack, registry):
            _add_wants_edge(graph, target.path, stack.path)

    auxiliary = len(graph.nodes) - len(graph.selected)
    logger.debug(
        "Built graph: %d stacks (%d auxiliary), %d edges",
        len(graph.nodes), auxiliary, len(graph.edges()),
    )
    return graph


def _add_wants_edge(graph: DependencyGraph, wanting: str, wanted: str) -> None:
    """Order ``wanted`` before ``wanting`` unless that would close a loop.

    Wants only pull stacks into the selection; a wants cycle is not an
    ordering error, so the closing edge is dropped.
    """
    if wanted not in graph.selected or wanting not in graph.selected:
        return
    if wanting == wanted or graph.reaches(wanted, wanting):
        logger.warning(
            "stack %s wants %s, but %s already runs after it - not ordering them",
            wanting, wanted, wanted,
        )
        return
    graph.add_edge(wanting, wanted)


def run_order(
    selected: list[Stack],
    registry: StackRegistry,
    reverse: bool = False,
) -> list[Stack]:
    """Validated run order of ``selected``.

    Raises:
        CycleError: If the constraints contain a loop.
    """
    graph = build_graph(selected, registry)
    graph.validate()

    order = [graph.nodes[p] for p in graph.order() if not graph.is_auxiliary(p)]
    if reverse:
        order.reverse()
    return order


# ── DOT rendering ───────────────────────────────────────────────

LABELS: dict[str, Callable[[Stack], str]] = {
    "basename": lambda s: s.basename,
    "stack.name": lambda s: s.name,
    "stack.dir": lambda s: s.path,
}


def render_dot(graph: DependencyGraph, label: str = "basename") -> str:
    """Render the graph in DOT.  Cycle-closing edges are drawn red.

    With the ``basename`` label, stacks sharing a basename are labelled
    with their full path instead.
    """
    if label not in LABELS:
        raise ValueError(f"unknown label {label!r}, expected one of {', '.join(LABELS)}")
    get_label = LABELS[label]

    paths = sorted(graph.nodes)
    ids = {path: f"n{i}" for i, path in enumerate(paths, start=1)}

    labels = {p: get_label(graph.nodes[p]) for p in paths}
    if label == "basename":
        seen: dict[str, int] = {}
        for text in labels.values():
            seen[text] = seen.get(text, 0) + 1
        labels = {p: (p if seen[text] > 1 else text) for p, text in labels.items()}

    cycle_edges = graph.back_edges()

    lines = ["digraph {"]
    for path in paths:
        lines.append(f'  {ids[path]} [label="{_escape(labels[path])}"];')
    for u, v in graph.edges():
        attrs = ' [color="red"]' if (u, v) in cycle_edges else ""
        lines.append(f"  {ids[u]} -> {ids[v]}{attrs};")
    lines.append("}")
    return "\n".join(lines) + "\n"


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')
