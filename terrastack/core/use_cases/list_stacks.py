"""
List use case — the stacks a command would act on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from terrastack.adapters.base import ChangeSource
from terrastack.core.engine.changes import ChangeReport
from terrastack.core.engine.graph import run_order
from terrastack.core.errors import CycleError, TerrastackError
from terrastack.core.models.stack import Stack
from terrastack.core.use_cases.workspace import SelectionRequest, Workspace, select

logger = logging.getLogger(__name__)


@dataclass
class ListResult:
    """Result of listing stacks."""

    stacks: list[Stack] = field(default_factory=list)
    changes: ChangeReport | None = None
    project_root: Path | None = None
    working_dir: str = "/"
    error: str | None = None
    cycle: list[str] | None = None

    def reason(self, stack: Stack) -> str:
        return self.changes.reason(stack.path) if self.changes else ""

    def to_dict(self) -> dict:
        if self.error:
            result: dict = {"error": self.error}
            if self.cycle:
                result["cycle"] = self.cycle
            return result

        stacks = []
        for stack in self.stacks:
            entry = {
                "path": stack.path,
                "id": stack.id,
                "name": stack.name,
                "tags": stack.tags,
            }
            if self.changes is not None:
                entry["reason"] = self.reason(stack)
            stacks.append(entry)

        result = {
            "project_root": str(self.project_root),
            "working_dir": self.working_dir,
            "stacks": stacks,
        }
        if self.changes is not None:
            result["changes"] = self.changes.to_dict()
        return result


def list_stacks(
    start_dir: Path | None = None,
    request: SelectionRequest | None = None,
    source: ChangeSource | None = None,
    ordered: bool = False,
) -> ListResult:
    """Select stacks, path-sorted or (``ordered``) in run order.

    Args:
        start_dir: Directory the command runs from (default: cwd).
        request: Selection flags.
        source: Change source for ``--changed`` (default: git).
        ordered: Return the stacks in run order.

    Returns:
        ListResult; ``error`` is set instead of raising.
    """
    request = request or SelectionRequest()
    result = ListResult()

    try:
        workspace = Workspace.load(start_dir)
        result.project_root = workspace.root
        result.working_dir = workspace.working_dir

        selection = select(workspace, request, source)
        result.changes = selection.changes
        result.stacks = selection.stacks

        if ordered:
            result.stacks = run_order(selection.stacks, workspace.registry)
    except CycleError as e:
        result.error = str(e)
        result.cycle = e.cycle
    except TerrastackError as e:
        result.error = str(e)

    return result
