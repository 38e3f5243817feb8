# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Counts load-test objects in the cluster and compares them with expected totals.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Set

from kubernetes_asyncio import client

from reports_loadtest.config import WorkloadConfig
from reports_loadtest.errors import InfrastructureNotReady
from reports_loadtest.kube import call_api
from reports_loadtest.manifests import (
    APP_LABEL,
    CONFIGMAP_NAMES,
    DEPLOYMENT_NAME,
    SERVICE_ACCOUNT_NAME,
    purpose_selector,
)
from reports_loadtest.naming import identifiers, namespace_name
from reports_loadtest.polling import SleepFn, poll_until

logger = logging.getLogger(__name__)

NAMESPACES = "namespaces"
SERVICE_ACCOUNTS = "serviceaccounts"
CONFIGMAPS = "configmaps"
DEPLOYMENTS = "deployments"
PODS = "pods"


@dataclass(frozen=True)
class ResourceCount:
    kind: str
    found: int
    expected: int

    @property
    def ok(self) -> bool:
        return self.found == self.expected

    def __str__(self) -> str:
        return f"{self.kind}: {self.found}/{self.expected}"


@dataclass
class VerificationReport:
    counts: List[ResourceCount] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(c.ok for c in self.counts)

    @property
    def mismatches(self) -> List[ResourceCount]:
        return [c for c in self.counts if not c.ok]

    def get(self, kind: str) -> ResourceCount:
        for count in self.counts:
            if count.kind == kind:
                return count
        raise KeyError(kind)


@dataclass
class Verifier:
    """Counts test objects by naming convention and label."""

    core_api: client.CoreV1Api
    apps_api: client.AppsV1Api
    workload: WorkloadConfig
    sleep: SleepFn = asyncio.sleep
    clock: Callable[[], float] = time.monotonic

    async def _call(self, fn):
        return await call_api(fn, self.workload.api_timeout)

    def configured_namespaces(self) -> Set[str]:
        w = self.workload
        return {
            namespace_name(i, w.namespace_prefix)
            for i in identifiers(
                w.total_namespaces, width=w.identifier_width, start=w.start_index
            )
        }

    async def test_namespaces(self, configured_only: bool = False) -> Set[str]:
        """
        Names of labelled namespaces carrying the test prefix.

        With ``configured_only`` the result is limited to the configured
        identifier range, so earlier runs with other ranges are not counted.
        """
        prefix = f"{self.workload.namespace_prefix}-"
        namespaces = await self._call(
            lambda: self.core_api.list_namespace(
                label_selector=purpose_selector(self.workload)
            )
        )
        names = {
            ns.metadata.name
            for ns in namespaces.items
            if ns.metadata.name.startswith(prefix)
        }
        if configured_only:
            names &= self.configured_namespaces()
        return names

    async def count_objects(self, configured_only: bool = True) -> Dict[str, int]:
        """
        Count namespaces, ServiceAccounts, ConfigMaps, Deployments and pods.

        Namespaced objects are only counted inside test namespaces. By default
        only the configured identifier range is counted; pass
        ``configured_only=False`` to count every namespace with the prefix.
        """
        test_namespaces = await self.test_namespaces(configured_only)

        service_accounts = await self._call(
            lambda: self.core_api.list_service_account_for_all_namespaces(
                field_selector=f"metadata.name={SERVICE_ACCOUNT_NAME}"
            )
        )
        configmaps = await self._call(
            lambda: self.core_api.list_config_map_for_all_namespaces(
                label_selector=purpose_selector(self.workload)
            )
        )
        deployments = await self._call(
            lambda: self.apps_api.list_deployment_for_all_namespaces(
                field_selector=f"metadata.name={DEPLOYMENT_NAME}"
            )
        )
        pods = await self._call(
            lambda: self.core_api.list_pod_for_all_namespaces(
                label_selector=f"app={APP_LABEL},{purpose_selector(self.workload)}"
            )
        )

        def _in_test_namespaces(items, names=None) -> int:
            return sum(
                1
                for item in items
                if item.metadata.namespace in test_namespaces
                and (names is None or item.metadata.name in names)
            )

        counts = {
            NAMESPACES: len(test_namespaces),
            SERVICE_ACCOUNTS: _in_test_namespaces(service_accounts.items),
            CONFIGMAPS: _in_test_namespaces(configmaps.items, set(CONFIGMAP_NAMES)),
            DEPLOYMENTS: _in_test_namespaces(deployments.items),
            PODS: _in_test_namespaces(pods.items),
        }
        logger.debug(f"Object counts: {counts}")
        return counts

    def build_report(
        self, counts: Dict[str, int], expect_empty: bool = False
    ) -> VerificationReport:
        w = self.workload
        if expect_empty:
            expected = dict.fromkeys(
                (NAMESPACES, SERVICE_ACCOUNTS, CONFIGMAPS, DEPLOYMENTS, PODS), 0
            )
        else:
            expected = {
                NAMESPACES: w.expected_namespaces,
                SERVICE_ACCOUNTS: w.expected_service_accounts,
                CONFIGMAPS: w.expected_configmaps,
                DEPLOYMENTS: w.expected_deployments,
            }
        return VerificationReport(
            counts=[
                ResourceCount(kind, counts.get(kind, 0), total)
                for kind, total in expected.items()
            ]
        )

    async def verify(
        self, expect_empty: bool = False, wait_timeout: float = 0.0
    ) -> VerificationReport:
        """
        Compare observed counts with the expected totals.

        Args:
            expect_empty: Expect zero objects (after cleanup)
            wait_timeout: Keep re-checking with backoff for up to this many
                seconds while counts have not converged

        Returns:
            The last VerificationReport; callers decide how to treat mismatches
        """
        configured_only = not expect_empty
        report = self.build_report(
            await self.count_objects(configured_only), expect_empty
        )
        if report.ok or wait_timeout <= 0:
            return report

        async def _converged():
            nonlocal report
            report = self.build_report(
                await self.count_objects(configured_only), expect_empty
            )
            return report.ok

        try:
            await poll_until(
                _converged,
                timeout=wait_timeout,
                description="object counts to converge",
                initial_interval=2.0,
                sleep=self.sleep,
                clock=self.clock,
            )
        except InfrastructureNotReady as e:
            logger.warning(str(e))
        return report
