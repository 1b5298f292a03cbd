"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from terrastack.core.config.stack_loader import StackRegistry


def _write_stack(root: Path, rel: str, content: str = "") -> Path:
    """Create ``<root>/<rel>/stack.yml`` with dedented ``content``."""
    rel = rel.strip("/")
    directory = root / rel if rel else root
    directory.mkdir(parents=True, exist_ok=True)
    stack_file = directory / "stack.yml"
    stack_file.write_text(textwrap.dedent(content))
    return stack_file


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """An empty project root (marked by terrastack.yml)."""
    (tmp_path / "terrastack.yml").write_text("name: test-project\n")
    return tmp_path


@pytest.fixture
def write_stack():
    """Return a helper writing ``stack.yml`` files."""
    return _write_stack


@pytest.fixture
def make_registry():
    """Build a registry from a ``{path: yaml}`` mapping."""

    def _make(root: Path, stacks: dict[str, str]) -> StackRegistry:
        for rel, content in stacks.items():
            _write_stack(root, rel, content)
        return StackRegistry.load(root)

    return _make
