"""
Receipt model — the outcome of running one stack.

The execution driver never raises for a per-stack failure: it records
it here.  A receipt moves through ``pending -> running`` and ends in
one of ``ok``, ``failed``, ``canceled`` (or ``skipped`` in dry-run).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StackStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    OK = "ok"
    FAILED = "failed"
    CANCELED = "canceled"
    SKIPPED = "skipped"

    @property
    def is_final(self) -> bool:
        return self not in (StackStatus.PENDING, StackStatus.RUNNING)


class Receipt(BaseModel):
    """Result of running the command in one stack."""

    stack: str                       # project-absolute stack path
    status: StackStatus = StackStatus.PENDING
    exit_code: int | None = None

    started_at: str | None = None
    ended_at: str | None = None
    duration_ms: int = 0

    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is StackStatus.OK

    @property
    def failed(self) -> bool:
        return self.status is StackStatus.FAILED

    @property
    def canceled(self) -> bool:
        return self.status is StackStatus.CANCELED

    def mark_running(self) -> None:
        self.status = StackStatus.RUNNING
        self.started_at = _now_iso()

    def finish(
        self,
        status: StackStatus,
        exit_code: int | None = None,
        error: str | None = None,
        duration_ms: int = 0,
    ) -> None:
        """Move the receipt to a final state."""
        self.status = status
        self.exit_code = exit_code
        self.error = error
        self.duration_ms = duration_ms
        self.ended_at = _now_iso()

    @classmethod
    def cancel(cls, stack: str, reason: str = "execution canceled") -> Receipt:
        """Create a receipt for a stack that never started."""
        return cls(stack=stack, status=StackStatus.CANCELED, error=reason)

    @classmethod
    def skip(cls, stack: str, reason: str = "", **kwargs: Any) -> Receipt:
        """Create a skip receipt."""
        return cls(stack=stack, status=StackStatus.SKIPPED, error=reason or None, **kwargs)


class RunReport(BaseModel):
    """All receipts of one invocation, in run order."""

    command: list[str] = Field(default_factory=list)
    receipts: list[Receipt] = Field(default_factory=list)
    dry_run: bool = False

    @property
    def total(self) -> int:
        return len(self.receipts)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.receipts if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.receipts if r.failed)

    @property
    def canceled(self) -> int:
        return sum(1 for r in self.receipts if r.canceled)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.receipts if r.status is StackStatus.SKIPPED)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0 and self.canceled == 0

    @property
    def status(self) -> str:
        if self.all_ok:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    @property
    def exit_code(self) -> int:
        return 0 if self.all_ok else 1

    def receipt_for(self, stack: str) -> Receipt | None:
        for receipt in self.receipts:
            if receipt.stack == stack:
                return receipt
        return None

    def to_dict(self) -> dict:
        return {
            "command": self.command,
            "status": self.status,
            "dry_run": self.dry_run,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "canceled": self.canceled,
            "skipped": self.skipped,
            "receipts": [r.model_dump(mode="json") for r in self.receipts],
        }
