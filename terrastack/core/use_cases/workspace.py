"""
Workspace — the project a command runs against, and stack selection.

Shared by every use case: locate the root, load ``terrastack.yml``,
discover the stacks, then narrow them down with the selection flags.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from terrastack.adapters.base import ChangeSource
from terrastack.core.config.loader import find_project_root, load_project_config
from terrastack.core.config.stack_loader import StackRegistry
from terrastack.core.engine.changes import ChangeReport, detect_changes, resolve_base_ref
from terrastack.core.engine.selection import select_stacks
from terrastack.core.engine.tags import parse_tag_filters
from terrastack.core.errors import GitError
from terrastack.core.models.project import ProjectConfig
from terrastack.core.models.stack import Stack, project_path

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """A loaded project."""

    root: Path
    config: ProjectConfig
    registry: StackRegistry
    working_dir: str = "/"      # project-absolute

    @classmethod
    def load(cls, start_dir: Path | None = None) -> Workspace:
        """Find the project around ``start_dir`` and discover its stacks.

        Raises:
            ConfigError: If the config or a stack declaration is invalid.
        """
        start = (start_dir or Path.cwd()).resolve()
        root = find_project_root(start)
        config = load_project_config(root)
        registry = StackRegistry.load(root)
        return cls(root=root, config=config, registry=registry, working_dir=project_path(root, start))


@dataclass
class SelectionRequest:
    """Selection flags shared by ``list``, ``run``, ``run-order`` and ``run-graph``."""

    tags: tuple[str, ...] = ()
    no_tags: tuple[str, ...] = ()
    changed: bool = False
    base_ref: str | None = None
    recursive: bool = True


@dataclass
class Selection:
    stacks: list[Stack] = field(default_factory=list)
    changes: ChangeReport | None = None


def default_change_source(root: Path) -> ChangeSource:
    from terrastack.adapters.vcs.git import GitAdapter

    return GitAdapter(root)


def compute_changes(
    workspace: Workspace,
    source: ChangeSource,
    base_ref: str | None = None,
) -> ChangeReport:
    """Ask ``source`` for changed files and map them to stacks.

    Raises:
        GitError: If the project is not a repository or git fails.
    """
    if not source.is_repository():
        raise GitError(f"the path {workspace.root} is not a git repository")

    ref = resolve_base_ref(source.current_branch(), workspace.config.git, base_ref)
    logger.debug("Detecting changes against %s", ref)

    files = source.changed_files(ref)
    report = detect_changes(workspace.registry, files, workspace.root)
    report.base_ref = ref
    return report


def warn_dirty_repository(workspace: Workspace, source: ChangeSource) -> list[str]:
    """Log a warning for untracked/uncommitted files, per the git settings."""
    settings = workspace.config.git
    messages: list[str] = []
    if settings.check_untracked:
        untracked = source.list_untracked()
        if untracked:
            messages.append(f"repository has untracked files: {', '.join(untracked)}")
    if settings.check_uncommitted:
        uncommitted = source.list_uncommitted()
        if uncommitted:
            messages.append(f"repository has uncommitted files: {', '.join(uncommitted)}")
    for message in messages:
        logger.warning(message)
    return messages


def select(
    workspace: Workspace,
    request: SelectionRequest,
    source: ChangeSource | None = None,
) -> Selection:
    """Apply the selection flags to the workspace stacks.

    Raises:
        TagFilterError: On an invalid ``--tags`` / ``--no-tags`` value.
        GitError: When ``--changed`` is set and git cannot answer.
    """
    clause = parse_tag_filters(request.tags, request.no_tags)

    changes: ChangeReport | None = None
    if request.changed:
        source = source or default_change_source(workspace.root)
        changes = compute_changes(workspace, source, request.base_ref)

    stacks = select_stacks(
        workspace.registry,
        working_dir=workspace.working_dir,
        tags=clause,
        changed=changes.paths if changes is not None else None,
        recursive=request.recursive,
    )
    return Selection(stacks=stacks, changes=changes)
