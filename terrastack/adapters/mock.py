"""
Mock adapters — test doubles for the change source and process launcher.

Configurable to return canned changed files and scripted exit codes
without touching git or spawning processes.
"""

from __future__ import annotations

from pathlib import Path

from terrastack.adapters.base import ChangeSource, ProcessHandle, ProcessLauncher
from terrastack.core.errors import GitError


class MockGitAdapter(ChangeSource):
    """Change source returning a fixed list of changed files."""

    def __init__(
        self,
        changed: list[str] | None = None,
        branch: str = "main",
        repository: bool = True,
        untracked: list[str] | None = None,
        uncommitted: list[str] | None = None,
    ):
        self._changed = list(changed or [])
        self._branch = branch
        self._repository = repository
        self._untracked = list(untracked or [])
        self._uncommitted = list(uncommitted or [])
        self.base_refs: list[str] = []

    @property
    def name(self) -> str:
        return "mock"

    def is_available(self) -> bool:
        return True

    def is_repository(self) -> bool:
        return self._repository

    def changed_files(self, base_ref: str) -> list[str]:
        if not self._repository:
            raise GitError("not a git repository")
        self.base_refs.append(base_ref)
        return list(self._changed)

    def current_branch(self) -> str:
        return self._branch

    def list_untracked(self) -> list[str]:
        return list(self._untracked)

    def list_uncommitted(self) -> list[str]:
        return list(self._uncommitted)


class MockProcess(ProcessHandle):
    """A process that exits immediately, or hangs until signalled.

    With ``lingering``, the leader exits on SIGTERM but the rest of its
    group keeps running until SIGKILL.
    """

    def __init__(
        self,
        exit_code: int = 0,
        hang: bool = False,
        ignore_term: bool = False,
        lingering: bool = False,
    ):
        self._exit_code = exit_code
        self._hang = hang
        self._ignore_term = ignore_term
        self._group_running = lingering
        self.returncode: int | None = None if hang else exit_code
        self.signals: list[str] = []

    def poll(self) -> int | None:
        return self.returncode

    def group_alive(self) -> bool:
        return self.returncode is None or self._group_running

    def terminate(self) -> None:
        self.signals.append("TERM")
        if not self._ignore_term and self.returncode is None:
            self.returncode = -15

    def kill(self) -> None:
        self.signals.append("KILL")
        self._group_running = False
        if self.returncode is None:
            self.returncode = -9


class MockLauncher(ProcessLauncher):
    """Records every start and replays scripted outcomes per directory.

    By default, every command succeeds.  ``set_exit_code`` makes the
    command fail in one directory, ``set_process`` installs a custom
    ``MockProcess`` (e.g. one that hangs).
    """

    def __init__(self, known_programs: set[str] | None = None, fail_start: bool = False):
        self._known = known_programs
        self._fail_start = fail_start
        self._processes: dict[str, MockProcess] = {}
        self._exit_codes: dict[str, int] = {}
        self.call_log: list[tuple[list[str], Path, dict[str, str]]] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def call_count(self) -> int:
        return len(self.call_log)

    @property
    def started_dirs(self) -> list[Path]:
        return [cwd for _, cwd, _ in self.call_log]

    def set_exit_code(self, cwd: Path, code: int) -> None:
        self._exit_codes[str(cwd)] = code

    def set_process(self, cwd: Path, process: MockProcess) -> None:
        self._processes[str(cwd)] = process

    def lookup(self, program: str, env: dict[str, str], cwd: Path) -> str | None:
        if self._known is not None and program not in self._known:
            return None
        return program

    def start(self, argv: list[str], cwd: Path, env: dict[str, str]) -> ProcessHandle:
        if self._fail_start:
            raise OSError("mock start failure")
        self.call_log.append((list(argv), cwd, dict(env)))
        key = str(cwd)
        if key in self._processes:
            return self._processes[key]
        return MockProcess(exit_code=self._exit_codes.get(key, 0))

    def reset(self) -> None:
        """Clear call log and scripted outcomes."""
        self.call_log.clear()
        self._processes.clear()
        self._exit_codes.clear()
