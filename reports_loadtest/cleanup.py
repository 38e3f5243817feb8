# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Removal of load-test objects.

Deleting a namespace cascades to everything inside it, so deleting the
workloads first is optional; both orders converge to zero test objects.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

from kubernetes_asyncio import client
from kubernetes_asyncio.client import exceptions

from reports_loadtest.config import WorkloadConfig
from reports_loadtest.errors import InfrastructureNotReady
from reports_loadtest.kube import API_ERRORS, call_api, describe_error, run_bounded
from reports_loadtest.manifests import (
    CONFIGMAP_NAMES,
    DEPLOYMENT_NAME,
    SERVICE_ACCOUNT_NAME,
    purpose_selector,
)
from reports_loadtest.naming import namespace_name
from reports_loadtest.polling import SleepFn, poll_until
from reports_loadtest.results import BulkResult

logger = logging.getLogger(__name__)


@dataclass
class CleanupSummary:
    deleted: BulkResult = field(default_factory=lambda: BulkResult("delete"))
    namespaces_gone: bool = True
    remaining_namespaces: List[str] = field(default_factory=list)


@dataclass
class Cleaner:
    """Deletes test workloads and namespaces; missing objects count as deleted."""

    core_api: client.CoreV1Api
    apps_api: client.AppsV1Api
    workload: WorkloadConfig
    namespace_timeout: float = 300.0
    sleep: SleepFn = asyncio.sleep
    clock: Callable[[], float] = time.monotonic

    def _namespace(self, identifier: str) -> str:
        return namespace_name(identifier, self.workload.namespace_prefix)

    async def _delete(
        self, call, identifier: str, operation: str, result: BulkResult
    ) -> None:
        try:
            await call_api(call, self.workload.api_timeout)
        except exceptions.ApiException as e:
            if e.status == 404:
                logger.debug(f"[{identifier}] {operation}: already gone")
                result.record_success(identifier, operation)
                return
            error = describe_error(e)
            logger.warning(f"[{identifier}] Failed to {operation}: {error}")
            result.record_failure(identifier, error, operation)
            return
        except API_ERRORS as e:
            error = describe_error(e)
            logger.warning(f"[{identifier}] Failed to {operation}: {error}")
            result.record_failure(identifier, error, operation)
            return
        result.record_success(identifier, operation)

    async def _delete_identifier_workloads(
        self, identifier: str, result: BulkResult
    ) -> None:
        namespace = self._namespace(identifier)
        await self._delete(
            lambda: self.apps_api.delete_namespaced_deployment(
                name=DEPLOYMENT_NAME, namespace=namespace
            ),
            identifier,
            f"delete Deployment/{DEPLOYMENT_NAME}",
            result,
        )
        for name in CONFIGMAP_NAMES:
            await self._delete(
                lambda name=name: self.core_api.delete_namespaced_config_map(
                    name=name, namespace=namespace
                ),
                identifier,
                f"delete ConfigMap/{name}",
                result,
            )
        await self._delete(
            lambda: self.core_api.delete_namespaced_service_account(
                name=SERVICE_ACCOUNT_NAME, namespace=namespace
            ),
            identifier,
            f"delete ServiceAccount/{SERVICE_ACCOUNT_NAME}",
            result,
        )

    async def _delete_identifier_namespace(
        self, identifier: str, result: BulkResult
    ) -> None:
        namespace = self._namespace(identifier)
        await self._delete(
            lambda: self.core_api.delete_namespace(name=namespace),
            identifier,
            f"delete Namespace/{namespace}",
            result,
        )

    async def delete_workloads(self, identifiers: Sequence[str]) -> BulkResult:
        result = BulkResult("delete workloads")

        async def _worker(identifier: str) -> None:
            await self._delete_identifier_workloads(identifier, result)

        await run_bounded(identifiers, _worker, self.workload.apply_concurrency)
        logger.info(f"Deleted workloads: {result.summary()}")
        return result

    async def delete_namespaces(self, identifiers: Sequence[str]) -> BulkResult:
        result = BulkResult("delete namespaces")

        async def _worker(identifier: str) -> None:
            await self._delete_identifier_namespace(identifier, result)

        await run_bounded(identifiers, _worker, self.workload.apply_concurrency)
        logger.info(f"Deleted namespaces: {result.summary()}")
        return result

    async def remaining_namespaces(self) -> List[str]:
        """Test namespaces still present, including ones still terminating."""
        prefix = f"{self.workload.namespace_prefix}-"
        namespaces = await call_api(
            lambda: self.core_api.list_namespace(
                label_selector=purpose_selector(self.workload)
            ),
            self.workload.api_timeout,
        )
        return sorted(
            ns.metadata.name
            for ns in namespaces.items
            if ns.metadata.name.startswith(prefix)
        )

    async def discover_identifiers(self) -> List[str]:
        """Identifiers of every existing test namespace, whatever run created it."""
        prefix = f"{self.workload.namespace_prefix}-"
        return [name[len(prefix):] for name in await self.remaining_namespaces()]

    async def wait_for_namespaces_gone(self) -> List[str]:
        """
        Wait for namespace deletion to finish.

        Returns:
            Names still present when the timeout ran out (empty on success)
        """
        remaining: List[str] = []

        async def _gone() -> bool:
            nonlocal remaining
            remaining = await self.remaining_namespaces()
            if remaining:
                logger.info(f"Waiting for {len(remaining)} namespaces to be deleted...")
            return not remaining

        try:
            await poll_until(
                _gone,
                timeout=self.namespace_timeout,
                description="test namespace deletion",
                initial_interval=2.0,
                max_interval=10.0,
                sleep=self.sleep,
                clock=self.clock,
            )
        except InfrastructureNotReady as e:
            logger.warning(f"{e}; remaining: {remaining}")
        return remaining

    async def cleanup(
        self,
        identifiers: Sequence[str],
        delete_namespaces: bool = True,
        workloads_first: bool = True,
    ) -> CleanupSummary:
        summary = CleanupSummary()
        if workloads_first or not delete_namespaces:
            summary.deleted.extend(await self.delete_workloads(identifiers))
        if delete_namespaces:
            summary.deleted.extend(await self.delete_namespaces(identifiers))
            summary.remaining_namespaces = await self.wait_for_namespaces_gone()
            summary.namespaces_gone = not summary.remaining_namespaces
        return summary
