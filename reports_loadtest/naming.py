# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Deterministic names for load-test namespaces and their batches.
"""

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple


@dataclass(frozen=True)
class Batch:
    """A contiguous slice of the identifier range processed together."""

    index: int
    identifiers: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.identifiers)

    @property
    def first(self) -> str:
        return self.identifiers[0]

    @property
    def last(self) -> str:
        return self.identifiers[-1]


def format_identifier(index: int, width: int = 3) -> str:
    """
    Format an identifier as a zero-padded string.

    Values wider than ``width`` are kept whole, never truncated.

    Args:
        index: The identifier (0 or greater)
        width: Minimum number of digits

    Returns:
        The padded identifier, e.g. ``"007"`` for 7 with width 3
    """
    if index < 0:
        raise ValueError(f"Identifier must not be negative: {index}")
    if width <= 0:
        raise ValueError(f"Identifier width must be positive: {width}")
    return f"{index:0{width}d}"


def identifiers(total: int, width: int = 3, start: int = 1) -> List[str]:
    """Return ``total`` consecutive padded identifiers beginning at ``start``."""
    if total < 0:
        raise ValueError(f"Total must not be negative: {total}")
    return [format_identifier(i, width) for i in range(start, start + total)]


def namespace_name(identifier: str, prefix: str = "load-test") -> str:
    return f"{prefix}-{identifier}"


def batch_count(total: int, batch_size: int) -> int:
    if batch_size <= 0:
        raise ValueError(f"Batch size must be positive: {batch_size}")
    return math.ceil(total / batch_size)


def partition(items: Sequence[str], batch_size: int) -> List[Batch]:
    """
    Split items into contiguous batches of ``batch_size``.

    The last batch holds the remainder and may be shorter.
    """
    if batch_size <= 0:
        raise ValueError(f"Batch size must be positive: {batch_size}")
    return [
        Batch(index=n, identifiers=tuple(items[offset : offset + batch_size]))
        for n, offset in enumerate(range(0, len(items), batch_size), 1)
    ]


def plan_batches(
    total: int, batch_size: int, width: int = 3, start: int = 1
) -> List[Batch]:
    return partition(identifiers(total, width=width, start=start), batch_size)
