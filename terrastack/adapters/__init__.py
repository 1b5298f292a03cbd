"""Adapters — bindings to git and to the process launcher.

Public re-exports for convenient access.
"""

from terrastack.adapters.base import ChangeSource, ProcessHandle, ProcessLauncher
from terrastack.adapters.mock import MockGitAdapter, MockLauncher, MockProcess

__all__ = [
    "ChangeSource",
    "MockGitAdapter",
    "MockLauncher",
    "MockProcess",
    "ProcessHandle",
    "ProcessLauncher",
]
