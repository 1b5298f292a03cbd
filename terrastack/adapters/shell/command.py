"""
Shell command adapter — run the user command as a child process.

Each command gets its own session (and so its own process group), so
that cancellation reaches every process the command spawned, not just
the direct child.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
from pathlib import Path

from terrastack.adapters.base import ProcessHandle, ProcessLauncher

logger = logging.getLogger(__name__)


class GroupProcess(ProcessHandle):
    """A ``subprocess.Popen`` leading its own process group."""

    def __init__(self, proc: subprocess.Popen):
        self.proc = proc

    @property
    def pid(self) -> int:
        return self.proc.pid

    def poll(self) -> int | None:
        return self.proc.poll()

    def terminate(self) -> None:
        self._signal(signal.SIGTERM)

    def kill(self) -> None:
        self._signal(signal.SIGKILL)

    def group_alive(self) -> bool:
        try:
            os.killpg(self.proc.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            pass    # exists, owned by someone else
        return True

    def _signal(self, signum: int) -> None:
        # The group outlives its leader when children were spawned
        logger.debug("Sending signal %d to process group %d", signum, self.proc.pid)
        try:
            os.killpg(self.proc.pid, signum)
        except ProcessLookupError:
            pass  # already gone


class ShellCommandAdapter(ProcessLauncher):
    """Start commands with ``subprocess.Popen``.

    The child inherits the terminal unless ``stdout``/``stderr`` are
    given (any value ``Popen`` accepts, e.g. a file descriptor).
    """

    def __init__(self, stdout=None, stderr=None):
        self.stdout = stdout
        self.stderr = stderr

    @property
    def name(self) -> str:
        return "shell"

    def lookup(self, program: str, env: dict[str, str], cwd: Path) -> str | None:
        if os.sep in program:
            candidate = Path(program) if os.path.isabs(program) else cwd / program
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return str(candidate)
            return None
        return shutil.which(program, path=env.get("PATH", os.defpath))

    def start(self, argv: list[str], cwd: Path, env: dict[str, str]) -> ProcessHandle:
        logger.debug("Executing: %s (cwd=%s)", " ".join(argv), cwd)
        proc = subprocess.Popen(
            argv,
            cwd=cwd,
            env=env,
            stdout=self.stdout,
            stderr=self.stderr,
            start_new_session=True,
        )
        return GroupProcess(proc)
