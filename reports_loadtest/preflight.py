# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Infrastructure validation run before any test objects are created.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from kubernetes_asyncio import client
from kubernetes_asyncio.client import exceptions

from reports_loadtest.config import ClusterConfig
from reports_loadtest.kube import API_ERRORS, describe_error

logger = logging.getLogger(__name__)

KYVERNO_COMPONENTS = ("kyverno", "reports-server")
REPORTS_SERVER_DB_ENV = "DB_HOST"


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str


@dataclass
class PreflightReport:
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(c.ok for c in self.checks)

    @property
    def failed(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.ok]


def _running(pods) -> list:
    return [p for p in pods.items if p.status and p.status.phase == "Running"]


@dataclass
class Preflight:
    """Checks the cluster, Kyverno, the Reports Server and monitoring."""

    core_api: client.CoreV1Api
    cluster: ClusterConfig
    eks_client_factory: Optional[Callable[[], Any]] = None

    def _eks_client(self):
        if self.eks_client_factory is not None:
            return self.eks_client_factory()
        session = boto3.Session(
            profile_name=self.cluster.aws_profile, region_name=self.cluster.region
        )
        return session.client("eks")

    async def check_kubernetes_access(self) -> CheckResult:
        try:
            await self.core_api.list_namespace(limit=1)
        except API_ERRORS as e:
            return CheckResult("kubernetes", False, f"API not reachable: {describe_error(e)}")
        return CheckResult("kubernetes", True, "API reachable")

    def check_eks_cluster(self) -> CheckResult:
        name = self.cluster.name
        try:
            response = self._eks_client().describe_cluster(name=name)
            status = response["cluster"]["status"]
        except (BotoCoreError, ClientError, KeyError) as e:
            return CheckResult("eks", False, f"Cannot describe cluster '{name}': {e}")
        if status != "ACTIVE":
            return CheckResult("eks", False, f"Cluster '{name}' is {status}")
        return CheckResult("eks", True, f"Cluster '{name}' is ACTIVE")

    async def _namespace_exists(self, namespace: str) -> bool:
        try:
            await self.core_api.read_namespace(name=namespace)
        except exceptions.ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    async def _check_component_pods(
        self,
        check: str,
        namespace: str,
        minimum: int,
        name_filter: Optional[tuple] = None,
    ) -> CheckResult:
        try:
            if not await self._namespace_exists(namespace):
                return CheckResult(check, False, f"Namespace {namespace} does not exist")
            pods = await self.core_api.list_namespaced_pod(namespace=namespace)
        except API_ERRORS as e:
            return CheckResult(check, False, describe_error(e))

        running = _running(pods)
        if name_filter:
            running = [
                p for p in running if any(n in p.metadata.name for n in name_filter)
            ]
        if len(running) < minimum:
            return CheckResult(
                check,
                False,
                f"{len(running)} running pods in {namespace}, need at least {minimum}",
            )
        return CheckResult(check, True, f"{len(running)} running pods in {namespace}")

    async def check_kyverno(self) -> CheckResult:
        return await self._check_component_pods(
            "kyverno",
            self.cluster.kyverno_namespace,
            self.cluster.min_kyverno_pods,
            KYVERNO_COMPONENTS,
        )

    async def check_monitoring(self) -> CheckResult:
        return await self._check_component_pods(
            "monitoring",
            self.cluster.monitoring_namespace,
            self.cluster.min_monitoring_pods,
        )

    async def reports_server_db_host(self) -> Optional[str]:
        """Return the database host configured on the Reports Server pod."""
        pods = await self.core_api.list_namespaced_pod(
            namespace=self.cluster.kyverno_namespace
        )
        for pod in pods.items:
            if "reports-server" not in pod.metadata.name:
                continue
            for container in pod.spec.containers or []:
                for env in container.env or []:
                    if env.name == REPORTS_SERVER_DB_ENV and env.value:
                        return env.value
        return None

    async def check_reports_server(self) -> CheckResult:
        try:
            host = await self.reports_server_db_host()
        except API_ERRORS as e:
            return CheckResult("reports-server", False, describe_error(e))
        if not host:
            return CheckResult(
                "reports-server",
                False,
                f"No Reports Server pod with {REPORTS_SERVER_DB_ENV} in "
                f"{self.cluster.kyverno_namespace}",
            )
        return CheckResult("reports-server", True, f"Database endpoint: {host}")

    async def run(self) -> PreflightReport:
        report = PreflightReport()
        report.checks.append(await self.check_kubernetes_access())
        if report.ok:
            if self.cluster.check_eks:
                report.checks.append(await asyncio.to_thread(self.check_eks_cluster))
            report.checks.append(await self.check_kyverno())
            report.checks.append(await self.check_monitoring())
            report.checks.append(await self.check_reports_server())

        for check in report.checks:
            log = logger.info if check.ok else logger.error
            log(f"Preflight {check.name}: {'OK' if check.ok else 'FAILED'} ({check.detail})")
        return report

    async def kyverno_restarts(self) -> int:
        """Total container restarts across the Kyverno namespace."""
        pods = await self.core_api.list_namespaced_pod(
            namespace=self.cluster.kyverno_namespace
        )
        return sum(
            cs.restart_count or 0
            for pod in pods.items
            for cs in (pod.status.container_statuses or [])
        )
