# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Bulk creation of load-test namespaces and their workload objects.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Sequence, Tuple

from kubernetes_asyncio import client
from kubernetes_asyncio.client import exceptions

from reports_loadtest.config import WorkloadConfig
from reports_loadtest.kube import API_ERRORS, call_api, describe_error, run_bounded
from reports_loadtest.manifests import WorkloadManifestBuilder
from reports_loadtest.results import BulkResult

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 50


@dataclass
class BulkApplier:
    """
    Creates or updates load-test objects for a range of identifiers.

    Each object is created; when it already exists (409) it is patched with the
    same manifest, so repeated runs converge on identical labels. Failures are
    recorded per identifier and never stop the remaining ones.
    """

    core_api: client.CoreV1Api
    apps_api: client.AppsV1Api
    workload: WorkloadConfig

    _completed: int = field(default=0, init=False)

    def _operations(self) -> Dict[str, Tuple[Callable, Callable]]:
        # kind -> (create(manifest), patch(manifest))
        core, apps = self.core_api, self.apps_api
        return {
            "Namespace": (
                lambda m: core.create_namespace(body=m),
                lambda m: core.patch_namespace(name=m["metadata"]["name"], body=m),
            ),
            "ServiceAccount": (
                lambda m: core.create_namespaced_service_account(
                    namespace=m["metadata"]["namespace"], body=m
                ),
                lambda m: core.patch_namespaced_service_account(
                    name=m["metadata"]["name"],
                    namespace=m["metadata"]["namespace"],
                    body=m,
                ),
            ),
            "ConfigMap": (
                lambda m: core.create_namespaced_config_map(
                    namespace=m["metadata"]["namespace"], body=m
                ),
                lambda m: core.patch_namespaced_config_map(
                    name=m["metadata"]["name"],
                    namespace=m["metadata"]["namespace"],
                    body=m,
                ),
            ),
            "Deployment": (
                lambda m: apps.create_namespaced_deployment(
                    namespace=m["metadata"]["namespace"], body=m
                ),
                lambda m: apps.patch_namespaced_deployment(
                    name=m["metadata"]["name"],
                    namespace=m["metadata"]["namespace"],
                    body=m,
                ),
            ),
        }

    async def apply_manifest(self, manifest: dict) -> str:
        """
        Create the object, or patch it when it already exists.

        Returns:
            "created" or "updated"

        Raises:
            ApiException, asyncio.TimeoutError, aiohttp.ClientError on failure
        """
        create, patch = self._operations()[manifest["kind"]]
        timeout = self.workload.api_timeout
        try:
            await call_api(lambda: create(manifest), timeout)
            return "created"
        except exceptions.ApiException as e:
            if e.status != 409:
                raise
        await call_api(lambda: patch(manifest), timeout)
        return "updated"

    async def _apply_one(
        self, manifest: dict, identifier: str, result: BulkResult
    ) -> bool:
        kind = manifest["kind"]
        operation = f"apply {kind}/{manifest['metadata']['name']}"
        try:
            outcome = await self.apply_manifest(manifest)
        except API_ERRORS as e:
            error = describe_error(e)
            logger.warning(f"[{identifier}] Failed to {operation}: {error}")
            result.record_failure(identifier, error, operation)
            return False
        logger.debug(f"[{identifier}] {kind} {manifest['metadata']['name']} {outcome}")
        result.record_success(identifier, operation)
        return True

    async def _apply_namespace(self, identifier: str, result: BulkResult) -> bool:
        builder = WorkloadManifestBuilder(identifier, self.workload)
        return await self._apply_one(builder.namespace(), identifier, result)

    async def _apply_workloads(self, identifier: str, result: BulkResult) -> None:
        builder = WorkloadManifestBuilder(identifier, self.workload)
        for manifest in builder.workloads():
            await self._apply_one(manifest, identifier, result)

    async def _apply_identifier(self, identifier: str, result: BulkResult) -> None:
        if await self._apply_namespace(identifier, result):
            await self._apply_workloads(identifier, result)
            return
        builder = WorkloadManifestBuilder(identifier, self.workload)
        for manifest in builder.workloads():
            result.record_failure(
                identifier,
                "skipped: namespace apply failed",
                f"apply {manifest['kind']}/{manifest['metadata']['name']}",
            )

    async def _run(
        self,
        identifiers: Sequence[str],
        step: Callable[[str, BulkResult], Awaitable[object]],
        operation: str,
    ) -> BulkResult:
        result = BulkResult(operation=operation)
        total = len(identifiers)
        self._completed = 0

        async def _worker(identifier: str) -> None:
            await step(identifier, result)
            self._completed += 1
            if self._completed % PROGRESS_INTERVAL == 0:
                logger.info(f"{operation}: {self._completed}/{total} identifiers done")

        logger.info(f"{operation}: {total} identifiers")
        await run_bounded(identifiers, _worker, self.workload.apply_concurrency)
        logger.info(f"{operation}: {result.summary()}")
        return result

    async def apply_namespaces(self, identifiers: Sequence[str]) -> BulkResult:
        return await self._run(identifiers, self._apply_namespace, "create namespaces")

    async def apply_workloads(self, identifiers: Sequence[str]) -> BulkResult:
        """Apply ServiceAccount, ConfigMaps and Deployment into existing namespaces."""
        return await self._run(identifiers, self._apply_workloads, "create workloads")

    async def apply_all(self, identifiers: Sequence[str]) -> BulkResult:
        """Apply the namespace and then its dependent objects for every identifier."""
        return await self._run(identifiers, self._apply_identifier, "create objects")
