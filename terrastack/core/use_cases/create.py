"""
Create use cases — ``create`` (new stack) and ``trigger`` (force a change).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from terrastack.core.config.stack_loader import STACK_FILES, stack_file_in
from terrastack.core.engine.changes import create_trigger
from terrastack.core.errors import StackConfigError, TerrastackError
from terrastack.core.models.stack import StackDecl, project_path
from terrastack.core.use_cases.workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass
class CreateResult:
    path: str = ""              # project-absolute stack path
    file: Path | None = None
    created: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {"path": self.path, "file": str(self.file), "created": self.created}


def _resolve_target(workspace: Workspace, target: Path, start_dir: Path) -> tuple[Path, str]:
    """Host directory and project path of ``target`` (relative to ``start_dir``)."""
    host = (target if target.is_absolute() else start_dir / target).resolve()
    try:
        return host, project_path(workspace.root, host)
    except ValueError as e:
        raise StackConfigError(f"{target} is outside the project root {workspace.root}") from e


def create_stack(
    target: Path,
    start_dir: Path | None = None,
    stack_id: str | None = None,
    name: str = "",
    description: str = "",
    tags: tuple[str, ...] = (),
    after: tuple[str, ...] = (),
    before: tuple[str, ...] = (),
    ignore_existing: bool = False,
) -> CreateResult:
    """Write a new ``stack.yml`` in ``target`` (created if missing).

    A random UUID is used as id when none is given.
    """
    start = (start_dir or Path.cwd()).resolve()
    result = CreateResult()

    try:
        workspace = Workspace.load(start)
        host, path = _resolve_target(workspace, target, start)
        result.path = path

        existing = stack_file_in(host) if host.is_dir() else None
        if existing is not None:
            if ignore_existing:
                logger.info("Stack %s already exists, nothing to do", path)
                result.file = existing
                return result
            raise StackConfigError(f"stack {path} already exists ({existing.name})")

        decl = StackDecl(
            id=stack_id or str(uuid.uuid4()),
            name=name or host.name,
            description=description,
            tags=list(tags),
            after=list(after),
            before=list(before),
        )
        other = workspace.registry.by_id(decl.id)
        if other is not None:
            raise StackConfigError(f"stack id {decl.id!r} already used by {other.path}")
    except ValidationError as e:
        result.error = f"invalid stack: {e}"
        return result
    except TerrastackError as e:
        result.error = str(e)
        return result

    host.mkdir(parents=True, exist_ok=True)
    data = decl.model_dump(exclude_defaults=True)

    stack_file = host / STACK_FILES[0]
    stack_file.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")

    result.file = stack_file
    result.created = True
    logger.info("Created stack %s (%s)", path, decl.id)
    return result


@dataclass
class TriggerResult:
    path: str = ""
    file: Path | None = None
    error: str | None = None


def trigger_stack(
    target: Path,
    start_dir: Path | None = None,
    reason: str = "",
    ignore: bool = False,
) -> TriggerResult:
    """Create a trigger file marking the stack at ``target`` as changed (or ignored)."""
    start = (start_dir or Path.cwd()).resolve()
    result = TriggerResult()

    try:
        workspace = Workspace.load(start)
        _, path = _resolve_target(workspace, target, start)

        stack = workspace.registry.get(path)
        if stack is None:
            raise StackConfigError(f"{path} is not a stack")
    except TerrastackError as e:
        result.error = str(e)
        return result

    result.path = path
    result.file = create_trigger(workspace.root, stack, reason=reason, ignore=ignore)
    return result
