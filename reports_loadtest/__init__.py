# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Admission-webhook load testing for Kyverno with the Reports Server.

This package creates a configurable number of test namespaces on Kubernetes,
scales their deployments up and down in batches to generate admission events,
verifies object counts, and checks that policy reports land in the Reports
Server PostgreSQL database.
"""

from reports_loadtest.applier import BulkApplier
from reports_loadtest.cleanup import Cleaner
from reports_loadtest.config import (
    ClusterConfig,
    DatabaseConfig,
    LoadTestConfig,
    SchedulerConfig,
    WorkloadConfig,
)
from reports_loadtest.monitor import StatusMonitor
from reports_loadtest.preflight import Preflight
from reports_loadtest.reports_db import ReportsDatabase
from reports_loadtest.scheduler import BatchScheduler
from reports_loadtest.verifier import Verifier

__all__ = [
    "BulkApplier",
    "BatchScheduler",
    "Verifier",
    "Cleaner",
    "Preflight",
    "ReportsDatabase",
    "StatusMonitor",
    "LoadTestConfig",
    "ClusterConfig",
    "WorkloadConfig",
    "SchedulerConfig",
    "DatabaseConfig",
]
