# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import logging
from types import SimpleNamespace
from typing import List

import pytest

from reports_loadtest.config import SchedulerConfig, WorkloadConfig

LOG_FORMAT = "[TEST] %(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=DATE_FORMAT)


class FakeClock:
    """Monotonic clock advanced only by its own sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def workload():
    """Small workload so tests stay readable."""
    return WorkloadConfig(total_namespaces=5, apply_concurrency=3, api_timeout=5.0)


@pytest.fixture
def scheduler_config():
    return SchedulerConfig(batch_size=2, dwell_seconds=30.0, cooldown_seconds=10.0)


def k8s_object(name: str, namespace: str = None, **status):
    """Minimal stand-in for a kubernetes_asyncio model returned by list calls."""
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, namespace=namespace),
        status=SimpleNamespace(**status),
    )


def k8s_list(*items):
    return SimpleNamespace(items=list(items))


@pytest.fixture
def make_object():
    return k8s_object


@pytest.fixture
def make_list():
    return k8s_list
