"""
Stack model — a directory unit of infrastructure code.

A stack is any directory holding a ``stack.yml`` marker.  Its path is
project-absolute (POSIX, ``/`` for the project root) so that stacks
compare and sort the same on every platform.
"""

from __future__ import annotations

import posixpath
import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

TAG_RE = re.compile(r"^[a-z][a-z0-9_-]*$")


class StackDecl(BaseModel):
    """The raw declaration read from ``stack.yml``.

    Field names mirror the YAML keys.  References are kept as strings
    here; they are parsed by the reference resolver.
    """

    id: str | None = None
    name: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    after: list[str] = Field(default_factory=list)
    before: list[str] = Field(default_factory=list)
    wants: list[str] = Field(default_factory=list)
    wanted_by: list[str] = Field(default_factory=list)
    watch: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, tags: list[str]) -> list[str]:
        for tag in tags:
            if not TAG_RE.match(tag):
                raise ValueError(
                    f"{tag!r}: tags must start with [a-z] and contain only [a-z0-9_-]"
                )
        return tags

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("id must not be empty")
        return value


class Stack(BaseModel):
    """An evaluated stack, ready for selection and ordering."""

    path: str                          # project-absolute, e.g. "/stacks/vpc"
    id: str | None = None
    name: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    after: list[str] = Field(default_factory=list)
    before: list[str] = Field(default_factory=list)
    wants: list[str] = Field(default_factory=list)
    wanted_by: list[str] = Field(default_factory=list)
    watch: list[str] = Field(default_factory=list)   # project-absolute file paths
    env: dict[str, str] = Field(default_factory=dict)

    @property
    def basename(self) -> str:
        return posixpath.basename(self.path) or "/"

    @property
    def rel_path(self) -> str:
        """Path relative to the project root (``.`` for the root stack)."""
        return self.path.lstrip("/") or "."

    def host_dir(self, root: Path) -> Path:
        """Filesystem location of the stack under ``root``."""
        return root / self.path.lstrip("/")

    def is_inside(self, other: Stack) -> bool:
        """Whether this stack is nested (at any depth) inside ``other``."""
        return is_subpath(self.path, other.path) and self.path != other.path

    def __str__(self) -> str:
        return self.path


def is_subpath(path: str, base: str) -> bool:
    """Whether project path ``path`` equals ``base`` or lives beneath it."""
    if base == "/":
        return path.startswith("/")
    return path == base or path.startswith(base + "/")


def project_path(root: Path, host_path: Path) -> str:
    """Convert a filesystem path under ``root`` into a project-absolute path."""
    rel = host_path.relative_to(root).as_posix()
    return "/" if rel == "." else "/" + rel
