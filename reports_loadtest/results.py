# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Outcome tracking for bulk Kubernetes operations.

Every per-identifier call records an OperationResult instead of raising, so a
bulk run can report "199/200 succeeded" rather than stopping at the first error.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class OperationResult:
    identifier: str
    operation: str
    ok: bool
    error: Optional[str] = None


@dataclass
class BulkResult:
    """Ordered collection of operation outcomes for one bulk step."""

    operation: str
    results: List[OperationResult] = field(default_factory=list)

    def record_success(self, identifier: str, operation: Optional[str] = None) -> None:
        self.results.append(
            OperationResult(identifier, operation or self.operation, True)
        )

    def record_failure(
        self, identifier: str, error: str, operation: Optional[str] = None
    ) -> None:
        self.results.append(
            OperationResult(identifier, operation or self.operation, False, error)
        )

    def extend(self, other: "BulkResult") -> None:
        self.results.extend(other.results)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def failures(self) -> List[OperationResult]:
        return [r for r in self.results if not r.ok]

    def failures_by_operation(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for r in self.failures:
            counts[r.operation] = counts.get(r.operation, 0) + 1
        return counts

    @property
    def identifiers(self) -> List[str]:
        return list(dict.fromkeys(r.identifier for r in self.results))

    @property
    def failed_identifiers(self) -> List[str]:
        """Identifiers with at least one failed operation, in first-seen order."""
        return list(dict.fromkeys(r.identifier for r in self.failures))

    def summary(self) -> str:
        return f"{self.succeeded}/{self.total} succeeded"

    def identifier_summary(self) -> str:
        total = len(self.identifiers)
        complete = total - len(self.failed_identifiers)
        return f"{complete}/{total} identifiers complete"
