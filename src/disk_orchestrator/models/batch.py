"""
Batch report for fan-out/fan-in execution.

This module defines the BatchReport dataclass: the complete, order-independent
mapping of submitted descriptors to their final OperationResult.
"""

from dataclasses import dataclass, field
from typing import Iterator, Union

from disk_orchestrator.models.enums import OperationStatus
from disk_orchestrator.models.operations import OperationResult

BatchKey = Union[str, int]


@dataclass(frozen=True)
class BatchReport:
    """
    Complete outcome of one batch.

    Invariant: exactly one result per submitted descriptor. Partial failure
    never drops entries; keys follow submission order.

    Attributes:
        results: Mapping from descriptor key (or batch index) to result
        elapsed_ms: Wall-clock time of the whole batch
    """

    results: dict[BatchKey, OperationResult]
    elapsed_ms: int = 0
    submitted: int = field(default=-1)

    def __post_init__(self) -> None:
        """Validate report invariants."""
        if self.submitted >= 0 and self.submitted != len(self.results):
            raise ValueError(
                f"BatchReport holds {len(self.results)} results for {self.submitted} descriptors"
            )
        if self.elapsed_ms < 0:
            raise ValueError("elapsed_ms must be >= 0")

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[BatchKey]:
        return iter(self.results)

    def __getitem__(self, key: BatchKey) -> OperationResult:
        return self.results[key]

    @property
    def succeeded(self) -> dict[BatchKey, OperationResult]:
        return {k: r for k, r in self.results.items() if r.succeeded}

    @property
    def failed(self) -> dict[BatchKey, OperationResult]:
        return {k: r for k, r in self.results.items() if r.failed}

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return self.failed_count == 0

    def summary(self) -> dict:
        """Counts per status, for logs and metadata writers."""
        counts = {status.value: 0 for status in OperationStatus}
        for result in self.results.values():
            counts[result.status.value] += 1
        counts["Cancelled"] = sum(1 for r in self.results.values() if r.cancelled)
        counts["total"] = len(self.results)
        return counts
