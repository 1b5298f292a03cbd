"""
Project model — the optional ``terrastack.yml`` at the project root.

Every section has defaults, so a project without a config file behaves
exactly like one with an empty file.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GitSettings(BaseModel):
    """How change detection talks to git."""

    default_branch: str = "main"
    default_remote: str = "origin"
    check_untracked: bool = True
    check_uncommitted: bool = True

    @property
    def default_base_ref(self) -> str:
        return f"{self.default_remote}/{self.default_branch}"


class RunSettings(BaseModel):
    """Defaults for ``terrastack run``."""

    env: dict[str, str] = Field(default_factory=dict)   # global overrides
    grace_period: float = 10.0                          # seconds before SIGKILL


class ProjectConfig(BaseModel):
    """Top-level project configuration."""

    name: str = ""
    git: GitSettings = Field(default_factory=GitSettings)
    run: RunSettings = Field(default_factory=RunSettings)
