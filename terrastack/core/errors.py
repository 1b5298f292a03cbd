"""
Error taxonomy — every failure the core reports to its callers.

Configuration and graph errors are raised before any subprocess is
spawned.  Per-stack execution failures are never raised: they are
recorded in receipts (see ``terrastack.core.models.receipt``).

The CLI catches ``TerrastackError`` once, prints it and exits 1.
"""

from __future__ import annotations


class TerrastackError(Exception):
    """Base class for all errors raised by the orchestration core."""


class ConfigError(TerrastackError):
    """Raised when project configuration is invalid or missing."""


class StackConfigError(ConfigError):
    """Raised when a stack declaration is malformed.

    Covers unreadable/invalid ``stack.yml`` files, invalid tags,
    duplicated IDs, invalid ``watch`` entries and tag queries used
    where they are not allowed.
    """


class TagFilterError(TerrastackError):
    """Raised when a tag filter or tag query has invalid syntax."""


class CycleError(TerrastackError):
    """Raised when the ordering constraints contain a cycle.

    ``cycle`` is the loop as an ordered list of stack paths with the
    closing node repeated at the end, e.g. ``["/a", "/b", "/a"]``.
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"cycle detected: {self.reason}")

    @property
    def reason(self) -> str:
        return " -> ".join(self.cycle)


class MissingStackIDError(TerrastackError):
    """Raised when an identity-requiring operation selects stacks without ``id``."""

    def __init__(self, paths: list[str]):
        self.paths = paths
        super().__init__(
            "stacks are missing the id field: " + ", ".join(paths)
        )


class GitError(TerrastackError):
    """Raised when a git query needed by change detection fails."""
