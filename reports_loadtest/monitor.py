# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Periodic status sampling of the cluster, Kyverno, the Reports Server and RDS.

Each sample is appended to a CSV file so a load run can be correlated with
component health afterwards.
"""

import asyncio
import csv
import logging
import os
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from kubernetes_asyncio import client

from reports_loadtest.config import ClusterConfig
from reports_loadtest.kube import API_ERRORS, describe_error
from reports_loadtest.polling import SleepFn

logger = logging.getLogger(__name__)

POLICY_REPORT_GROUP = "wgpolicyk8s.io"
POLICY_REPORT_VERSION = "v1alpha2"

RDS_METRICS = {
    "rds_connections": "DatabaseConnections",
    "rds_cpu": "CPUUtilization",
    "rds_free_memory": "FreeableMemory",
}


@dataclass
class StatusSample:
    timestamp: str
    nodes_ready: Optional[int] = None
    nodes_total: Optional[int] = None
    kyverno_running: Optional[int] = None
    reports_server_running: Optional[int] = None
    total_pods: Optional[int] = None
    policy_reports: Optional[int] = None
    rds_status: Optional[str] = None
    rds_connections: Optional[float] = None
    rds_cpu: Optional[float] = None
    rds_free_memory: Optional[float] = None

    @classmethod
    def columns(cls) -> list:
        return [f.name for f in fields(cls)]

    def row(self) -> list:
        return ["N/A" if v is None else v for v in asdict(self).values()]


@dataclass
class StatusMonitor:
    """Collects StatusSamples; every source is optional and reported as N/A on error."""

    core_api: client.CoreV1Api
    custom_api: client.CustomObjectsApi
    cluster: ClusterConfig
    rds_instance_id: Optional[str] = None
    aws_client_factory: Optional[Callable[[str], Any]] = None

    def _aws_client(self, service: str):
        if self.aws_client_factory is not None:
            return self.aws_client_factory(service)
        session = boto3.Session(
            profile_name=self.cluster.aws_profile, region_name=self.cluster.region
        )
        return session.client(service)

    async def _node_counts(self, sample: StatusSample) -> None:
        nodes = await self.core_api.list_node()
        sample.nodes_total = len(nodes.items)
        sample.nodes_ready = sum(
            1
            for node in nodes.items
            if any(
                c.type == "Ready" and c.status == "True"
                for c in (node.status.conditions or [])
            )
        )

    async def _pod_counts(self, sample: StatusSample) -> None:
        pods = await self.core_api.list_pod_for_all_namespaces()
        sample.total_pods = len(pods.items)
        running = [
            p
            for p in pods.items
            if p.metadata.namespace == self.cluster.kyverno_namespace
            and p.status.phase == "Running"
        ]
        sample.reports_server_running = sum(
            1 for p in running if "reports-server" in p.metadata.name
        )
        sample.kyverno_running = len(running) - sample.reports_server_running

    async def _policy_reports(self, sample: StatusSample) -> None:
        reports = await self.custom_api.list_cluster_custom_object(
            group=POLICY_REPORT_GROUP,
            version=POLICY_REPORT_VERSION,
            plural="policyreports",
        )
        sample.policy_reports = len(reports.get("items", []))

    def _rds(self, sample: StatusSample) -> None:
        instance = self.rds_instance_id
        response = self._aws_client("rds").describe_db_instances(
            DBInstanceIdentifier=instance
        )
        instances = response.get("DBInstances", [])
        if instances:
            sample.rds_status = instances[0].get("DBInstanceStatus")

        cloudwatch = self._aws_client("cloudwatch")
        end = datetime.now(timezone.utc)
        for attr, metric in RDS_METRICS.items():
            stats = cloudwatch.get_metric_statistics(
                Namespace="AWS/RDS",
                MetricName=metric,
                Dimensions=[{"Name": "DBInstanceIdentifier", "Value": instance}],
                StartTime=end - timedelta(minutes=5),
                EndTime=end,
                Period=300,
                Statistics=["Average"],
            )
            datapoints = stats.get("Datapoints", [])
            if datapoints:
                setattr(sample, attr, datapoints[0]["Average"])

    async def sample(self) -> StatusSample:
        sample = StatusSample(timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
        for name, step in (
            ("nodes", self._node_counts),
            ("pods", self._pod_counts),
            ("policy reports", self._policy_reports),
        ):
            try:
                await step(sample)
            except API_ERRORS as e:
                logger.warning(f"Could not collect {name}: {describe_error(e)}")

        if self.rds_instance_id:
            try:
                await asyncio.to_thread(self._rds, sample)
            except (BotoCoreError, ClientError) as e:
                logger.warning(f"Could not collect RDS status: {e}")
        return sample

    async def run(
        self,
        output_path: str,
        interval: float = 30.0,
        iterations: Optional[int] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> int:
        """
        Append a sample to ``output_path`` every ``interval`` seconds.

        Runs until cancelled, or for ``iterations`` samples when given.

        Returns:
            Number of samples written
        """
        new_file = not os.path.exists(output_path) or os.path.getsize(output_path) == 0
        written = 0
        with open(output_path, "a", newline="") as f:
            writer = csv.writer(f)
            if new_file:
                writer.writerow(StatusSample.columns())
            while iterations is None or written < iterations:
                sample = await self.sample()
                writer.writerow(sample.row())
                f.flush()
                written += 1
                logger.info(
                    f"Nodes {sample.nodes_ready}/{sample.nodes_total} ready, "
                    f"kyverno {sample.kyverno_running}, "
                    f"reports-server {sample.reports_server_running}, "
                    f"pods {sample.total_pods}, policy reports {sample.policy_reports}, "
                    f"RDS {sample.rds_status or 'N/A'}"
                )
                if iterations is None or written < iterations:
                    await sleep(interval)
        return written
