"""
Run use case — execute a command across the selected stacks.

The full vertical slice: load the project, select stacks, order them,
check identities, then hand the order to the executor.  Every
configuration or graph problem is reported before anything runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from terrastack.adapters.base import ChangeSource, ProcessLauncher
from terrastack.core.engine.executor import (
    InterruptChannel,
    RunOptions,
    StackRunHooks,
    run_stacks,
)
from terrastack.core.engine.graph import run_order
from terrastack.core.engine.selection import check_stack_ids
from terrastack.core.errors import CycleError, TerrastackError
from terrastack.core.models.receipt import RunReport
from terrastack.core.models.stack import Stack
from terrastack.core.use_cases.workspace import (
    SelectionRequest,
    Workspace,
    default_change_source,
    select,
    warn_dirty_repository,
)

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of running a command."""

    report: RunReport | None = None
    order: list[Stack] = field(default_factory=list)
    project_root: Path | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    cycle: list[str] | None = None

    @property
    def exit_code(self) -> int:
        if self.error:
            return 1
        return self.report.exit_code if self.report else 0

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            if self.cycle:
                result["cycle"] = self.cycle
            return result

        result["project_root"] = str(self.project_root)
        result["order"] = [s.path for s in self.order]
        if self.warnings:
            result["warnings"] = self.warnings
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def run_command(
    command: list[str],
    start_dir: Path | None = None,
    request: SelectionRequest | None = None,
    reverse: bool = False,
    continue_on_error: bool = False,
    dry_run: bool = False,
    require_ids: bool = False,
    automation: bool = False,
    source: ChangeSource | None = None,
    launcher: ProcessLauncher | None = None,
    interrupts: InterruptChannel | None = None,
    hooks: StackRunHooks | None = None,
) -> RunResult:
    """Run ``command`` in every selected stack, in order.

    Args:
        command: Program and arguments.
        start_dir: Directory the command runs from (default: cwd).
        request: Selection flags.
        reverse: Run in reverse order.
        continue_on_error: Keep going after a failing stack.
        dry_run: Report what would run without spawning anything.
        require_ids: Every selected stack must declare an ``id``.
        automation: Automation mode (stacks without id are dropped
            with a warning instead of failing the run).
        source: Change source for ``--changed`` (default: git).
        launcher: Process launcher (default: subprocess).
        interrupts: Interrupt channel fed by the caller.
        hooks: Callbacks around each stack.

    Returns:
        RunResult with the run report; ``error`` is set when nothing ran.
    """
    request = request or SelectionRequest()
    result = RunResult()

    if not command:
        result.error = "no command given"
        return result

    # ── Load project, select and order ───────────────────────────
    try:
        workspace = Workspace.load(start_dir)
        result.project_root = workspace.root

        if request.changed:
            source = source or default_change_source(workspace.root)

        selection = select(workspace, request, source)
        if request.changed:
            result.warnings = warn_dirty_repository(workspace, source)
        order = run_order(selection.stacks, workspace.registry, reverse=reverse)

        if require_ids or automation:
            order = check_stack_ids(order, automation=automation)
    except CycleError as e:
        result.error = str(e)
        result.cycle = e.cycle
        return result
    except TerrastackError as e:
        result.error = str(e)
        return result

    result.order = order
    if not order:
        logger.info("No stacks selected, nothing to run")
        result.report = RunReport(command=list(command), dry_run=dry_run)
        return result

    # ── Execute ──────────────────────────────────────────────────
    options = RunOptions(
        root=workspace.root,
        continue_on_error=continue_on_error,
        dry_run=dry_run,
        env=workspace.config.run.env,
        grace_period=workspace.config.run.grace_period,
    )
    result.report = run_stacks(
        order,
        command,
        options,
        interrupts=interrupts,
        launcher=launcher,
        hooks=hooks,
    )
    return result
