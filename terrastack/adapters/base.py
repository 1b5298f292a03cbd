"""
Adapter base — the contracts between the engine and external tools.

The engine never calls git or spawns processes directly.  It talks to
a ``ChangeSource`` for the list of changed files and to a
``ProcessLauncher`` for running the user command in each stack.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class ChangeSource(ABC):
    """Where changed files come from (git in practice)."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'git', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool is installed.  Never raises."""

    @abstractmethod
    def is_repository(self) -> bool:
        """Whether the project root is under version control."""

    @abstractmethod
    def changed_files(self, base_ref: str) -> list[str]:
        """Files changed between ``base_ref`` and HEAD, relative to the root.

        Raises:
            GitError: If the revisions cannot be compared.
        """

    @abstractmethod
    def current_branch(self) -> str:
        """Name of the checked out branch."""

    def list_untracked(self) -> list[str]:
        return []

    def list_uncommitted(self) -> list[str]:
        return []

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class ProcessHandle(ABC):
    """A running child process (and its process group)."""

    @abstractmethod
    def poll(self) -> int | None:
        """Exit code if the process has finished, else None."""

    @abstractmethod
    def terminate(self) -> None:
        """Ask the process group to stop (SIGTERM)."""

    @abstractmethod
    def kill(self) -> None:
        """Force the process group to stop (SIGKILL)."""

    def group_alive(self) -> bool:
        """Whether any process of the group is still running."""
        return self.poll() is None


class ProcessLauncher(ABC):
    """Starts the user command inside a stack directory."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'shell', 'mock')."""

    @abstractmethod
    def lookup(self, program: str, env: dict[str, str], cwd: Path) -> str | None:
        """Resolve ``program`` using the PATH of ``env``.  None if not found."""

    @abstractmethod
    def start(self, argv: list[str], cwd: Path, env: dict[str, str]) -> ProcessHandle:
        """Start ``argv`` in ``cwd``.

        Raises:
            OSError: If the process cannot be started.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
