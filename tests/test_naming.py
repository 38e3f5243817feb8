# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for identifier formatting and batch planning."""

import pytest

from reports_loadtest.naming import (
    batch_count,
    format_identifier,
    identifiers,
    namespace_name,
    partition,
    plan_batches,
)

pytestmark = [pytest.mark.unit]


@pytest.mark.parametrize(
    "index,width,expected",
    [(1, 3, "001"), (42, 3, "042"), (200, 3, "200"), (7, 5, "00007"), (1234, 3, "1234")],
)
def test_format_identifier(index, width, expected):
    assert format_identifier(index, width) == expected


def test_format_identifier_rejects_invalid_input():
    with pytest.raises(ValueError):
        format_identifier(-1)
    with pytest.raises(ValueError):
        format_identifier(1, width=0)


def test_identifiers_are_unique_and_ordered():
    ids = identifiers(200)
    assert len(ids) == 200
    assert len(set(ids)) == 200
    assert ids[0] == "001"
    assert ids[-1] == "200"
    assert ids == sorted(ids)


def test_identifiers_resume_from_offset():
    assert identifiers(3, start=150) == ["150", "151", "152"]


def test_namespace_name():
    assert namespace_name("007") == "load-test-007"
    assert namespace_name("007", prefix="perf") == "perf-007"


@pytest.mark.parametrize(
    "total,size,expected", [(200, 10, 20), (25, 10, 3), (9, 10, 1), (0, 10, 0)]
)
def test_batch_count(total, size, expected):
    assert batch_count(total, size) == expected


def test_batch_count_rejects_zero_size():
    with pytest.raises(ValueError):
        batch_count(10, 0)


def test_plan_batches_covers_every_identifier_once():
    batches = plan_batches(200, 10)
    assert len(batches) == 20
    assert [b.index for b in batches] == list(range(1, 21))
    assert all(len(b) == 10 for b in batches)

    flat = [i for b in batches for i in b.identifiers]
    assert flat == identifiers(200)
    assert batches[0].first == "001"
    assert batches[-1].last == "200"


def test_partition_last_batch_holds_remainder():
    batches = partition(identifiers(25), 10)
    assert [len(b) for b in batches] == [10, 10, 5]
    assert batches[2].identifiers == tuple(identifiers(5, start=21))


def test_partition_empty_input():
    assert partition([], 10) == []
