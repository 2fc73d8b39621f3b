"""
Typed accumulator for best-effort batch operations.

Every batch job reports what succeeded and, for each failure, which item
failed and why, instead of logging and moving on.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class BatchFailure:
    item: Any
    reason: str


@dataclass
class BatchResult:
    """Outcome of a batch operation: success count plus itemised failures."""

    succeeded: int = 0
    failed: List[BatchFailure] = field(default_factory=list)

    def record_success(self, count: int = 1) -> None:
        self.succeeded += count

    def record_failure(self, item: Any, reason: Any) -> None:
        self.failed.append(BatchFailure(item=item, reason=str(reason)))

    def merge(self, other: "BatchResult") -> "BatchResult":
        self.succeeded += other.succeeded
        self.failed.extend(other.failed)
        return self

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def total_attempted(self) -> int:
        return self.succeeded + self.failed_count

    def as_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": [{"item": f.item, "reason": f.reason} for f in self.failed],
        }
