"""Partial-result type for best-effort batch steps."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class BatchFailure:
    item: str
    reason: str


@dataclass(slots=True)
class BatchResult:
    """Items that succeeded, failed (with reasons) or were skipped in a batch."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)
    skipped: list[BatchFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def add_failure(self, item: str, reason: str) -> None:
        self.failed.append(BatchFailure(item=item, reason=reason))

    def add_skipped(self, item: str, reason: str) -> None:
        self.skipped.append(BatchFailure(item=item, reason=reason))

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "failed": [{"item": entry.item, "reason": entry.reason} for entry in self.failed],
            "skipped": [{"item": entry.item, "reason": entry.reason} for entry in self.skipped],
        }


__all__ = ["BatchFailure", "BatchResult"]
