"""
Configuration loader — finds the project root and reads terrastack.yml.

The project file is optional: a project without one gets the model
defaults.  The root itself is the first directory (walking up from the
working directory) holding ``terrastack.yml``, else the first holding
``.git``, else the starting directory.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from terrastack.core.errors import ConfigError
from terrastack.core.models.project import ProjectConfig

logger = logging.getLogger(__name__)

# Default config filename
PROJECT_CONFIG_FILE = "terrastack.yml"

ENV_AUTOMATION = "TERRASTACK_AUTOMATION"

_TRUTHY = {"1", "true", "yes", "on"}

__all__ = [
    "ConfigError",
    "PROJECT_CONFIG_FILE",
    "automation_mode",
    "find_project_file",
    "find_project_root",
    "load_project_config",
]


def automation_mode(flag: bool = False, environ: dict[str, str] | None = None) -> bool:
    """Whether to run in automation mode (flag, TERRASTACK_AUTOMATION or CI)."""
    if flag:
        return True
    environ = os.environ if environ is None else environ
    for name in (ENV_AUTOMATION, "CI"):
        if environ.get(name, "").strip().lower() in _TRUTHY:
            return True
    return False


def _walk_up(start: Path):
    current = start.resolve()
    while True:
        yield current
        parent = current.parent
        if parent == current:
            return  # filesystem root
        current = parent


def find_project_file(start_dir: Path | None = None) -> Path | None:
    """Search for terrastack.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to terrastack.yml, or None if not found.
    """
    for current in _walk_up(start_dir or Path.cwd()):
        candidate = current / PROJECT_CONFIG_FILE
        if candidate.is_file():
            return candidate
    return None


def find_project_root(start_dir: Path | None = None) -> Path:
    """Locate the project root for a command started in ``start_dir``."""
    start = (start_dir or Path.cwd()).resolve()

    config = find_project_file(start)
    if config is not None:
        return config.parent

    for current in _walk_up(start):
        if (current / ".git").exists():
            return current

    logger.debug("No %s or .git found above %s, using it as root", PROJECT_CONFIG_FILE, start)
    return start


def load_project_config(root: Path) -> ProjectConfig:
    """Load and validate ``<root>/terrastack.yml``.

    Returns:
        Validated ProjectConfig (defaults when the file does not exist).

    Raises:
        ConfigError: If the file exists but is unreadable or invalid.
    """
    path = root / PROJECT_CONFIG_FILE
    if not path.exists():
        logger.debug("No %s in %s, using defaults", PROJECT_CONFIG_FILE, root)
        return ProjectConfig()

    logger.debug("Loading project config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return ProjectConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "project" key or be flat
    project_data = data["project"] if "project" in data else data
    if project_data is None:
        project_data = {}

    try:
        config = ProjectConfig.model_validate(project_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid project configuration in {path}: {e}") from e

    logger.info("Loaded project config '%s' from %s", config.name or root.name, path)
    return config
