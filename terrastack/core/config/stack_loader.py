"""
Stack loader — discovers stack directories and loads their declarations.

Any directory holding a ``stack.yml`` (or ``stack.yaml``) is a stack.
Stacks may nest; a nested stack is scheduled on its own.  Unlike the
project file, a broken stack declaration is always a hard error: the
whole invocation stops before anything runs.
"""

from __future__ import annotations

import logging
import os
import posixpath
from pathlib import Path

import yaml
from pydantic import ValidationError

from terrastack.core.engine.tags import TagClause, match_tags
from terrastack.core.errors import ConfigError, StackConfigError
from terrastack.core.models.stack import Stack, StackDecl, is_subpath, project_path

logger = logging.getLogger(__name__)

STACK_FILES = ("stack.yml", "stack.yaml")


def stack_file_in(directory: Path) -> Path | None:
    """Return the stack declaration file of ``directory``, if any."""
    for name in STACK_FILES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def load_stack(root: Path, stack_file: Path) -> Stack:
    """Load a single stack declaration.

    Args:
        root: Project root (absolute).
        stack_file: Path to the stack's ``stack.yml``.

    Returns:
        Evaluated Stack model.

    Raises:
        StackConfigError: If the file cannot be read or validated.
    """
    try:
        raw = stack_file.read_text(encoding="utf-8")
    except OSError as e:
        raise StackConfigError(f"Cannot read {stack_file}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise StackConfigError(f"Invalid YAML in {stack_file}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise StackConfigError(
            f"Expected a YAML mapping in {stack_file}, got {type(data).__name__}"
        )

    # May be wrapped under a "stack" key or be flat
    if "stack" in data:
        data = data["stack"] or {}
        if not isinstance(data, dict):
            raise StackConfigError(f"'stack' in {stack_file} must be a mapping")

    try:
        decl = StackDecl.model_validate(data)
    except ValidationError as e:
        raise StackConfigError(f"Invalid stack declaration in {stack_file}: {e}") from e

    path = project_path(root, stack_file.parent)
    watch = [_validate_watch(root, path, entry, stack_file) for entry in decl.watch]

    stack = Stack(
        path=path,
        id=decl.id,
        name=decl.name or posixpath.basename(path) or "/",
        description=decl.description,
        tags=decl.tags,
        after=decl.after,
        before=decl.before,
        wants=decl.wants,
        wanted_by=decl.wanted_by,
        watch=watch,
        env=decl.env,
    )
    logger.debug("Loaded stack %s from %s", stack.path, stack_file)
    return stack


def _validate_watch(root: Path, stack_path: str, entry: str, stack_file: Path) -> str:
    """Resolve one ``watch`` entry into a project-absolute file path.

    The entry must stay inside the project, must not go through a
    symlink, and must be a regular file when it exists.
    """
    if not entry:
        raise StackConfigError(f"{stack_file}: empty watch entry")

    # Normalised relative to the root so that ".." cannot be clamped away
    if entry.startswith("/"):
        rel = posixpath.normpath(entry.lstrip("/") or ".")
    else:
        rel = posixpath.normpath(posixpath.join(stack_path.lstrip("/"), entry))

    if rel == ".." or rel.startswith("../"):
        raise StackConfigError(f"{stack_file}: watch path {entry!r} escapes the project root")
    target = "/" if rel == "." else "/" + rel

    host = root
    for part in [p for p in target.split("/") if p]:
        host = host / part
        if host.is_symlink():
            raise StackConfigError(
                f"{stack_file}: watch path {entry!r} traverses symlink {host}"
            )

    if host.exists() and not host.is_file():
        raise StackConfigError(f"{stack_file}: watch path {entry!r} is not a regular file")

    return target


def discover_stacks(root: Path) -> list[Stack]:
    """Walk the project tree and load every stack, sorted by path.

    Dot-directories (``.git``, ``.terrastack``, ...) are skipped.

    Raises:
        ConfigError: If the root cannot be read.
        StackConfigError: On any malformed declaration or duplicate ID.
    """
    root = root.resolve()
    if not root.is_dir():
        raise ConfigError(f"Project root is not a directory: {root}")

    errors: list[OSError] = []
    stacks: list[Stack] = []

    for dirpath, dirnames, _filenames in os.walk(root, onerror=errors.append):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        stack_file = stack_file_in(Path(dirpath))
        if stack_file is not None:
            stacks.append(load_stack(root, stack_file))

    if errors:
        raise ConfigError(f"Cannot read project tree under {root}: {errors[0]}")

    stacks.sort(key=lambda s: s.path)
    _check_unique_ids(stacks)

    logger.info("Discovered %d stacks under %s", len(stacks), root)
    return stacks


def _check_unique_ids(stacks: list[Stack]) -> None:
    seen: dict[str, str] = {}
    for stack in stacks:
        if stack.id is None:
            continue
        key = stack.id.lower()
        if key in seen:
            raise StackConfigError(
                f"duplicated stack id {stack.id!r}: found in {seen[key]} and {stack.path}"
            )
        seen[key] = stack.path


class StackRegistry:
    """Every stack of the project, with the lookups the engine needs.

    Read-only after construction.  Stacks are kept sorted by path.
    """

    def __init__(self, root: Path, stacks: list[Stack]):
        self.root = root
        self.stacks = sorted(stacks, key=lambda s: s.path)
        self._by_path = {s.path: s for s in self.stacks}
        self._by_id = {s.id.lower(): s for s in self.stacks if s.id}

    @classmethod
    def load(cls, root: Path) -> StackRegistry:
        """Discover the stacks under ``root``."""
        root = root.resolve()
        return cls(root, discover_stacks(root))

    def __len__(self) -> int:
        return len(self.stacks)

    def __iter__(self):
        return iter(self.stacks)

    def __contains__(self, path: str) -> bool:
        return path in self._by_path

    def get(self, path: str) -> Stack | None:
        return self._by_path.get(path)

    def by_id(self, stack_id: str) -> Stack | None:
        """Look a stack up by id (case-insensitive)."""
        return self._by_id.get(stack_id.lower())

    def stacks_under(self, path: str) -> list[Stack]:
        """The stack at ``path`` (if any) plus every stack beneath it."""
        return [s for s in self.stacks if is_subpath(s.path, path)]

    def stacks_by_tags(self, clause: TagClause | None) -> list[Stack]:
        return [s for s in self.stacks if match_tags(clause, s.tags)]

    def parent_of(self, stack: Stack) -> Stack | None:
        """Nearest stack strictly above ``stack``, if any."""
        return self.nearest_stack(posixpath.dirname(stack.path)) if stack.path != "/" else None

    def nearest_stack(self, path: str) -> Stack | None:
        """The stack at ``path`` or its closest ancestor."""
        current = path or "/"
        while True:
            stack = self._by_path.get(current)
            if stack is not None:
                return stack
            if current == "/":
                return None
            current = posixpath.dirname(current)
