"""
Change detection — which stacks are touched by a set of changed files.

The changed files come from a ``ChangeSource`` (git in practice, see
``terrastack.adapters.vcs.git``).  This module only maps files to
stacks:

    - a file marks the nearest stack at or above its directory
    - a file listed in a stack's ``watch`` marks that stack
    - a trigger file under ``.terrastack/triggers/`` marks (or unmarks)
      the stack it names
"""

from __future__ import annotations

import logging
import posixpath
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ValidationError

from terrastack.core.config.stack_loader import STACK_FILES, StackRegistry
from terrastack.core.models.project import GitSettings
from terrastack.core.models.stack import Stack

logger = logging.getLogger(__name__)

TRIGGERS_DIR = ".terrastack/triggers"

REASON_CHANGED = "stack has unmerged changes"
REASON_WATCH = "watched file {path} changed"
REASON_TRIGGER = "stack has been triggered by: {path}"


class TriggerInfo(BaseModel):
    """Content of a trigger file."""

    type: Literal["changed", "ignored"] = "changed"
    reason: str = ""
    ctime: int | None = None

    model_config = {"extra": "ignore"}


@dataclass
class ChangeReport:
    """Outcome of change detection."""

    files: list[str] = field(default_factory=list)
    changed: dict[str, str] = field(default_factory=dict)   # stack path -> reason
    deleted: list[str] = field(default_factory=list)        # removed stack paths
    base_ref: str = ""

    @property
    def paths(self) -> set[str]:
        return set(self.changed)

    def reason(self, path: str) -> str:
        return self.changed.get(path, "")

    def to_dict(self) -> dict:
        return {
            "base_ref": self.base_ref,
            "files": self.files,
            "changed": [
                {"stack": path, "reason": self.changed[path]} for path in sorted(self.changed)
            ],
            "deleted": self.deleted,
        }


def detect_changes(
    registry: StackRegistry,
    changed_files: list[str],
    root: Path | None = None,
) -> ChangeReport:
    """Map ``changed_files`` (relative to the root) to changed stacks."""
    root = root or registry.root
    report = ChangeReport(files=sorted(changed_files))
    ignored: set[str] = set()
    deleted: set[str] = set()

    for rel in report.files:
        path = "/" + rel.strip("/")
        host = root / rel

        # ── Trigger files ──────────────────────────────────────
        target = trigger_target(path)
        if target is not None:
            if not host.exists():
                logger.debug("ignoring deleted trigger file %s", path)
                continue
            info = _load_trigger(host)
            if info is None:
                continue
            if info.type == "ignored":
                ignored.add(target)
            elif target in registry:
                report.changed[target] = REASON_TRIGGER.format(path=path)
            else:
                logger.debug("trigger %s names %s which is not a stack", path, target)
            continue

        dirname = posixpath.dirname(path)

        # ── Deleted stacks ─────────────────────────────────────
        if posixpath.basename(path) in STACK_FILES and not host.parent.exists():
            deleted.add(dirname)

        stack = registry.nearest_stack(dirname)
        if stack is not None and stack.path not in report.changed:
            report.changed[stack.path] = REASON_CHANGED

    # ── Watched files ──────────────────────────────────────────
    changed_paths = {"/" + f.strip("/") for f in report.files}
    for stack in registry:
        if stack.path in report.changed:
            continue
        for watched in stack.watch:
            if watched in changed_paths:
                report.changed[stack.path] = REASON_WATCH.format(path=watched)
                break

    for path in ignored:
        report.changed.pop(path, None)

    report.deleted = sorted(deleted)
    logger.info(
        "%d changed files: %d changed stacks, %d deleted stacks",
        len(report.files), len(report.changed), len(report.deleted),
    )
    return report


def changed_stacks(registry: StackRegistry, report: ChangeReport) -> list[Stack]:
    return [s for s in registry if s.path in report.changed]


# ── Base ref ────────────────────────────────────────────────────


def resolve_base_ref(current_branch: str, settings: GitSettings, override: str | None = None) -> str:
    """Base revision to compare against.

    On the default branch this is the previous commit; on any other
    branch it is the default branch on the default remote.
    """
    if override:
        return override
    if current_branch == settings.default_branch:
        return "HEAD^"
    return settings.default_base_ref


# ── Triggers ────────────────────────────────────────────────────


def trigger_target(path: str) -> str | None:
    """Stack path named by a trigger file path, or None if not a trigger."""
    prefix = "/" + TRIGGERS_DIR + "/"
    if not path.startswith(prefix):
        return None
    stack_part = posixpath.dirname(path[len(prefix) - 1:])
    return stack_part or "/"


def _load_trigger(host: Path) -> TriggerInfo | None:
    try:
        data = yaml.safe_load(host.read_text(encoding="utf-8")) or {}
        return TriggerInfo.model_validate(data)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        logger.warning("skipping malformed trigger file %s: %s", host, e)
        return None


def create_trigger(root: Path, stack: Stack, reason: str = "", ignore: bool = False) -> Path:
    """Write a trigger file for ``stack`` and return its path.

    Once committed, the trigger marks the stack as changed (or, with
    ``ignore``, keeps it out of the changed set) in change detection.
    """
    directory = root / TRIGGERS_DIR / stack.path.lstrip("/")
    directory.mkdir(parents=True, exist_ok=True)

    now = int(time.time())
    path = directory / f"{now}-{uuid.uuid4().hex}.yml"
    info = TriggerInfo(type="ignored" if ignore else "changed", reason=reason, ctime=now)
    path.write_text(yaml.safe_dump(info.model_dump(), sort_keys=False), encoding="utf-8")

    logger.info("Created trigger %s for stack %s", path, stack)
    return path
