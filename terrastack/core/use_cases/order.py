"""
Order use cases — ``run-order`` and ``run-graph``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from terrastack.adapters.base import ChangeSource
from terrastack.core.engine.graph import build_graph, render_dot, run_order
from terrastack.core.errors import CycleError, TerrastackError
from terrastack.core.models.stack import Stack
from terrastack.core.use_cases.workspace import SelectionRequest, Workspace, select

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    """Run order of the selected stacks."""

    stacks: list[Stack] = field(default_factory=list)
    error: str | None = None
    cycle: list[str] | None = None

    def to_dict(self) -> dict:
        if self.error:
            result: dict = {"error": self.error}
            if self.cycle:
                result["cycle"] = self.cycle
            return result
        return {"order": [s.path for s in self.stacks]}


@dataclass
class GraphResult:
    """DOT rendering of the dependency graph."""

    dot: str = ""
    cycle: list[str] | None = None
    error: str | None = None


def compute_order(
    start_dir: Path | None = None,
    request: SelectionRequest | None = None,
    reverse: bool = False,
    source: ChangeSource | None = None,
) -> OrderResult:
    result = OrderResult()
    try:
        workspace = Workspace.load(start_dir)
        selection = select(workspace, request or SelectionRequest(), source)
        result.stacks = run_order(selection.stacks, workspace.registry, reverse=reverse)
    except CycleError as e:
        result.error = str(e)
        result.cycle = e.cycle
    except TerrastackError as e:
        result.error = str(e)
    return result


def compute_graph(
    start_dir: Path | None = None,
    request: SelectionRequest | None = None,
    label: str = "basename",
    source: ChangeSource | None = None,
) -> GraphResult:
    """Render the graph of the selected stacks.

    A cycle is not an error here: it is reported in ``cycle`` and its
    closing edges are drawn red.
    """
    result = GraphResult()
    try:
        workspace = Workspace.load(start_dir)
        selection = select(workspace, request or SelectionRequest(), source)
        graph = build_graph(selection.stacks, workspace.registry)
        try:
            graph.validate()
        except CycleError as e:
            logger.warning("%s", e)
            result.cycle = e.cycle
        result.dot = render_dot(graph, label)
    except TerrastackError as e:
        result.error = str(e)
    return result
