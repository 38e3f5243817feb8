# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Batch scheduler that generates admission-webhook load.

Each batch of load-test Deployments goes through

    IDLE -> SCALING_UP -> DWELL -> SCALING_DOWN -> COOLDOWN -> IDLE

Batches run one after another; the scale calls inside a batch run concurrently
through a bounded worker pool.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from kubernetes_asyncio import client

from reports_loadtest.config import SchedulerConfig, WorkloadConfig
from reports_loadtest.errors import InfrastructureNotReady
from reports_loadtest.kube import API_ERRORS, call_api, describe_error, run_bounded
from reports_loadtest.manifests import APP_LABEL, DEPLOYMENT_NAME
from reports_loadtest.naming import Batch, namespace_name
from reports_loadtest.polling import SleepFn, poll_until
from reports_loadtest.results import BulkResult

logger = logging.getLogger(__name__)


class BatchPhase(str, Enum):
    IDLE = "idle"
    SCALING_UP = "scaling_up"
    DWELL = "dwell"
    SCALING_DOWN = "scaling_down"
    COOLDOWN = "cooldown"


@dataclass
class LoadRunSummary:
    """Totals for one scheduler run."""

    batches: int = 0
    scale_up: BulkResult = field(default_factory=lambda: BulkResult("scale up"))
    scale_down: BulkResult = field(default_factory=lambda: BulkResult("scale down"))
    readiness_timeouts: List[int] = field(default_factory=list)
    slept_seconds: float = 0.0
    duration_seconds: float = 0.0
    max_running_pods: int = 0

    @property
    def scale_operations(self) -> int:
        """Scale calls issued, each one an admission webhook event."""
        return self.scale_up.total + self.scale_down.total

    @property
    def ok(self) -> bool:
        return self.scale_up.ok and self.scale_down.ok and not self.readiness_timeouts


@dataclass
class BatchScheduler:
    """Scales batches of load-test Deployments up and down."""

    core_api: client.CoreV1Api
    apps_api: client.AppsV1Api
    workload: WorkloadConfig
    scheduler: SchedulerConfig
    on_phase: Optional[Callable[[Batch, BatchPhase], None]] = None
    sleep: SleepFn = asyncio.sleep
    clock: Callable[[], float] = time.monotonic

    phase: BatchPhase = field(default=BatchPhase.IDLE, init=False)

    def _enter(self, batch: Batch, phase: BatchPhase) -> None:
        logger.debug(f"Batch {batch.index}: {self.phase.value} -> {phase.value}")
        self.phase = phase
        if self.on_phase is not None:
            self.on_phase(batch, phase)

    def _namespace(self, identifier: str) -> str:
        return namespace_name(identifier, self.workload.namespace_prefix)

    async def scale_batch(self, batch: Batch, replicas: int) -> BulkResult:
        """Issue one scale call per batch member and wait for all of them."""
        result = BulkResult(operation=f"scale to {replicas}")

        async def _scale(identifier: str) -> None:
            namespace = self._namespace(identifier)
            body = {"spec": {"replicas": replicas}}
            try:
                await call_api(
                    lambda: self.apps_api.patch_namespaced_deployment_scale(
                        name=DEPLOYMENT_NAME, namespace=namespace, body=body
                    ),
                    self.workload.api_timeout,
                )
            except API_ERRORS as e:
                error = describe_error(e)
                logger.warning(f"Failed to scale {namespace}/{DEPLOYMENT_NAME}: {error}")
                result.record_failure(identifier, error)
                return
            result.record_success(identifier)

        await run_bounded(batch.identifiers, _scale, self.scheduler.effective_concurrency)
        return result

    async def _replicas_reached(self, identifier: str, replicas: int) -> bool:
        deployment = await call_api(
            lambda: self.apps_api.read_namespaced_deployment(
                name=DEPLOYMENT_NAME, namespace=self._namespace(identifier)
            ),
            self.workload.api_timeout,
        )
        status = deployment.status
        if replicas == 0:
            return not (status.replicas or 0)
        return (status.ready_replicas or 0) >= replicas

    async def wait_for_replicas(
        self, identifiers: Sequence[str], replicas: int, description: str
    ) -> None:
        """
        Poll until every Deployment reaches ``replicas``.

        Raises:
            InfrastructureNotReady: When the readiness timeout runs out
        """
        pending = set(identifiers)

        async def _check() -> bool:
            for identifier in sorted(pending):
                try:
                    if await self._replicas_reached(identifier, replicas):
                        pending.discard(identifier)
                except API_ERRORS as e:
                    logger.debug(f"Error reading {identifier}: {describe_error(e)}")
            return not pending

        try:
            await poll_until(
                _check,
                timeout=self.scheduler.readiness_timeout,
                description=description,
                sleep=self.sleep,
                clock=self.clock,
            )
        except InfrastructureNotReady:
            logger.warning(f"{description}: still pending {sorted(pending)}")
            raise

    async def count_running_pods(self) -> Optional[int]:
        """Count running load-test pods across all namespaces."""
        try:
            pods = await call_api(
                lambda: self.core_api.list_pod_for_all_namespaces(
                    label_selector=f"app={APP_LABEL},purpose={self.workload.purpose}",
                    field_selector="status.phase=Running",
                ),
                self.workload.api_timeout,
            )
        except API_ERRORS as e:
            logger.warning(f"Could not count running pods: {describe_error(e)}")
            return None
        prefix = f"{self.workload.namespace_prefix}-"
        return sum(1 for pod in pods.items if pod.metadata.namespace.startswith(prefix))

    async def _pause(self, seconds: float, summary: LoadRunSummary) -> None:
        if seconds > 0:
            await self.sleep(seconds)
            summary.slept_seconds += seconds

    async def _settle(
        self, batch: Batch, succeeded: Sequence[str], replicas: int, summary: LoadRunSummary
    ) -> None:
        if self.scheduler.wait_mode != "ready" or not succeeded:
            return
        try:
            await self.wait_for_replicas(
                succeeded,
                replicas,
                f"batch {batch.index} deployments at {replicas} replica(s)",
            )
        except InfrastructureNotReady:
            summary.readiness_timeouts.append(batch.index)

    async def run_batch(self, batch: Batch, summary: LoadRunSummary) -> None:
        s = self.scheduler
        logger.info(
            f"=== BATCH {batch.index}: namespaces {batch.first}-{batch.last} ==="
        )
        try:
            self._enter(batch, BatchPhase.SCALING_UP)
            up = await self.scale_batch(batch, 1)
            summary.scale_up.extend(up)
            logger.info(f"Batch {batch.index}: scaled up ({up.summary()})")
            await self._settle(
                batch, [r.identifier for r in up.results if r.ok], 1, summary
            )

            self._enter(batch, BatchPhase.DWELL)
            logger.info(f"Batch {batch.index}: dwelling {s.dwell_seconds:.0f}s")
            await self._pause(s.dwell_seconds, summary)

            running = await self.count_running_pods()
            if running is not None:
                summary.max_running_pods = max(summary.max_running_pods, running)
                logger.info(f"Current running pods: {running}")

            self._enter(batch, BatchPhase.SCALING_DOWN)
            down = await self.scale_batch(batch, 0)
            summary.scale_down.extend(down)
            logger.info(f"Batch {batch.index}: scaled down ({down.summary()})")
            await self._settle(
                batch, [r.identifier for r in down.results if r.ok], 0, summary
            )

            self._enter(batch, BatchPhase.COOLDOWN)
            logger.info(f"Batch {batch.index}: cooling down {s.cooldown_seconds:.0f}s")
            await self._pause(s.cooldown_seconds, summary)
        except asyncio.CancelledError:
            if self.phase in (
                BatchPhase.SCALING_UP,
                BatchPhase.DWELL,
                BatchPhase.SCALING_DOWN,
            ):
                logger.warning(
                    f"Interrupted in batch {batch.index} ({self.phase.value}); "
                    "scaling the batch back to 0"
                )
                await asyncio.shield(self.scale_batch(batch, 0))
            raise

        summary.batches += 1
        self._enter(batch, BatchPhase.IDLE)

    async def run(self, batches: Sequence[Batch]) -> LoadRunSummary:
        summary = LoadRunSummary()
        s = self.scheduler
        logger.info(
            f"Starting load run: {len(batches)} batches of up to {s.batch_size}, "
            f"dwell {s.dwell_seconds:.0f}s, cooldown {s.cooldown_seconds:.0f}s, "
            f"wait mode {s.wait_mode}"
        )
        start = self.clock()
        for batch in batches:
            await self.run_batch(batch, summary)
        summary.duration_seconds = self.clock() - start
        logger.info(
            f"Load run complete: {summary.batches} batches, "
            f"{summary.scale_operations} scale operations"
        )
        return summary
