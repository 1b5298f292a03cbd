"""
Git adapter — the change source used by ``--changed``.

Uses the git CLI — never raw API calls.  All paths are reported
relative to the project root (``--relative``), which may be a
subdirectory of the repository.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from terrastack.adapters.base import ChangeSource
from terrastack.core.errors import GitError

logger = logging.getLogger(__name__)


class GitAdapter(ChangeSource):
    """Answer change-detection queries with the git CLI."""

    def __init__(self, root: Path, timeout: int = 30):
        self.root = root
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "git"

    def is_available(self) -> bool:
        return shutil.which("git") is not None

    def is_repository(self) -> bool:
        if not self.is_available():
            return False
        try:
            return self._git(["rev-parse", "--is-inside-work-tree"]).strip() == "true"
        except GitError:
            return False

    def changed_files(self, base_ref: str) -> list[str]:
        base = self.rev_parse(base_ref)
        head = self.rev_parse("HEAD")
        if base == head:
            logger.debug("Base %s is HEAD, nothing changed", base_ref)
            return []

        output = self._git(["diff", "--name-only", "--relative", base, head])
        return _lines(output)

    def current_branch(self) -> str:
        return self._git(["rev-parse", "--abbrev-ref", "HEAD"]).strip()

    def rev_parse(self, ref: str) -> str:
        return self._git(["rev-parse", ref]).strip()

    def list_untracked(self) -> list[str]:
        return _lines(self._git(["ls-files", "--others", "--exclude-standard"]))

    def list_uncommitted(self) -> list[str]:
        return _lines(self._git(["diff-index", "--name-only", "--relative", "HEAD"]))

    # ── Helpers ─────────────────────────────────────────────────

    def _git(self, args: list[str]) -> str:
        """Run a git command and return stdout."""
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise GitError(f"git {args[0]} failed: {e}") from e

        if result.returncode != 0:
            raise GitError(result.stderr.strip() or f"git {args[0]} failed")
        return result.stdout


def _lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]
