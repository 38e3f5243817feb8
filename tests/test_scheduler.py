# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for BatchScheduler."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from kubernetes_asyncio.client import exceptions

from reports_loadtest.config import SchedulerConfig, WorkloadConfig
from reports_loadtest.naming import Batch, plan_batches
from reports_loadtest.scheduler import BatchPhase, BatchScheduler, LoadRunSummary

pytestmark = [pytest.mark.unit]


def _deployment(replicas=0, ready_replicas=0):
    return SimpleNamespace(
        status=SimpleNamespace(replicas=replicas, ready_replicas=ready_replicas)
    )


@pytest.fixture
def core_api(make_list):
    api = AsyncMock()
    api.list_pod_for_all_namespaces.return_value = make_list()
    return api


@pytest.fixture
def apps_api():
    return AsyncMock()


@pytest.mark.asyncio
async def test_full_run_issues_two_scale_calls_per_namespace(
    core_api, apps_api, fake_clock
):
    workload = WorkloadConfig(total_namespaces=200)
    sched_cfg = SchedulerConfig(batch_size=10, dwell_seconds=30, cooldown_seconds=10)
    scheduler = BatchScheduler(
        core_api,
        apps_api,
        workload,
        sched_cfg,
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )

    summary = await scheduler.run(plan_batches(200, 10))

    assert summary.batches == 20
    assert summary.scale_up.total == 200
    assert summary.scale_down.total == 200
    assert summary.scale_operations == 400
    assert summary.ok
    assert summary.slept_seconds == 20 * (30 + 10)
    assert summary.duration_seconds == 800
    assert fake_clock.sleeps == [30, 10] * 20

    bodies = [
        c.kwargs["body"]["spec"]["replicas"]
        for c in apps_api.patch_namespaced_deployment_scale.await_args_list
    ]
    assert bodies.count(1) == 200
    assert bodies.count(0) == 200
    assert scheduler.phase == BatchPhase.IDLE


@pytest.mark.asyncio
async def test_phase_order_per_batch(core_api, apps_api, workload, fake_clock):
    phases = []
    scheduler = BatchScheduler(
        core_api,
        apps_api,
        workload,
        SchedulerConfig(batch_size=5, dwell_seconds=1, cooldown_seconds=1),
        on_phase=lambda batch, phase: phases.append((batch.index, phase)),
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )

    await scheduler.run(plan_batches(5, 5))

    assert [p for _, p in phases] == [
        BatchPhase.SCALING_UP,
        BatchPhase.DWELL,
        BatchPhase.SCALING_DOWN,
        BatchPhase.COOLDOWN,
        BatchPhase.IDLE,
    ]


@pytest.mark.asyncio
async def test_batch_is_fully_scaled_before_dwell(core_api, apps_api, workload):
    events = []

    async def _scale(name, namespace, body):
        events.append(("scale", namespace, body["spec"]["replicas"]))

    async def _sleep(seconds):
        events.append(("sleep", seconds))

    apps_api.patch_namespaced_deployment_scale.side_effect = _scale
    scheduler = BatchScheduler(
        core_api,
        apps_api,
        workload,
        SchedulerConfig(batch_size=3, dwell_seconds=30, cooldown_seconds=10),
        sleep=_sleep,
    )

    await scheduler.run_batch(Batch(1, ("001", "002", "003")), LoadRunSummary())

    assert [e[0] for e in events] == ["scale"] * 3 + ["sleep"] + ["scale"] * 3 + ["sleep"]
    assert {e[2] for e in events[:3]} == {1}
    assert events[3] == ("sleep", 30)
    assert {e[2] for e in events[4:7]} == {0}
    assert events[7] == ("sleep", 10)


@pytest.mark.asyncio
async def test_scale_failures_are_recorded(core_api, apps_api, workload, fake_clock):
    async def _scale(name, namespace, body):
        if namespace == "load-test-002" and body["spec"]["replicas"] == 1:
            raise exceptions.ApiException(status=403, reason="Forbidden")

    apps_api.patch_namespaced_deployment_scale.side_effect = _scale
    scheduler = BatchScheduler(
        core_api,
        apps_api,
        workload,
        SchedulerConfig(batch_size=5),
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )

    summary = await scheduler.run(plan_batches(5, 5))

    assert summary.scale_up.summary() == "4/5 succeeded"
    assert summary.scale_down.ok
    assert summary.scale_up.failures[0].identifier == "002"
    assert not summary.ok


@pytest.mark.asyncio
async def test_ready_mode_waits_for_replicas(core_api, apps_api, workload, fake_clock):
    ready = {"count": 0}

    async def _read(name, namespace):
        ready["count"] += 1
        # not ready on the first poll, ready afterwards
        return _deployment(replicas=1, ready_replicas=1 if ready["count"] > 2 else 0)

    apps_api.read_namespaced_deployment.side_effect = _read
    scheduler = BatchScheduler(
        core_api,
        apps_api,
        workload,
        SchedulerConfig(
            batch_size=2, dwell_seconds=30, cooldown_seconds=10, wait_mode="ready"
        ),
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )

    await scheduler.wait_for_replicas(["001", "002"], 1, "batch 1 ready")

    assert fake_clock.sleeps == [1.0]


@pytest.mark.asyncio
async def test_ready_mode_timeout_is_recorded(core_api, apps_api, workload, fake_clock):
    apps_api.read_namespaced_deployment.return_value = _deployment(
        replicas=1, ready_replicas=0
    )
    scheduler = BatchScheduler(
        core_api,
        apps_api,
        workload,
        SchedulerConfig(
            batch_size=2,
            dwell_seconds=30,
            cooldown_seconds=10,
            wait_mode="ready",
            readiness_timeout=10,
        ),
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )
    # scale-down converges immediately
    apps_api.read_namespaced_deployment.side_effect = lambda name, namespace: (
        _deployment(replicas=1, ready_replicas=0)
        if scheduler.phase == BatchPhase.SCALING_UP
        else _deployment(replicas=0)
    )

    summary = await scheduler.run(plan_batches(2, 2))

    assert summary.readiness_timeouts == [1]
    assert summary.batches == 1
    assert summary.scale_down.ok
    assert not summary.ok


@pytest.mark.asyncio
async def test_fixed_mode_does_not_poll(core_api, apps_api, workload, fake_clock):
    scheduler = BatchScheduler(
        core_api,
        apps_api,
        workload,
        SchedulerConfig(batch_size=5),
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )
    await scheduler.run(plan_batches(5, 5))
    apps_api.read_namespaced_deployment.assert_not_awaited()


@pytest.mark.asyncio
async def test_count_running_pods_filters_by_prefix(
    core_api, apps_api, workload, make_object, make_list
):
    core_api.list_pod_for_all_namespaces.return_value = make_list(
        make_object("p1", "load-test-001"),
        make_object("p2", "load-test-002"),
        make_object("p3", "other-001"),
    )
    scheduler = BatchScheduler(core_api, apps_api, workload, SchedulerConfig())

    assert await scheduler.count_running_pods() == 2
    kwargs = core_api.list_pod_for_all_namespaces.await_args.kwargs
    assert kwargs["label_selector"] == "app=test-app,purpose=load-testing"
    assert kwargs["field_selector"] == "status.phase=Running"


@pytest.mark.asyncio
async def test_count_running_pods_returns_none_on_error(core_api, apps_api, workload):
    core_api.list_pod_for_all_namespaces.side_effect = exceptions.ApiException(
        status=403, reason="Forbidden"
    )
    scheduler = BatchScheduler(core_api, apps_api, workload, SchedulerConfig())
    assert await scheduler.count_running_pods() is None


@pytest.mark.asyncio
async def test_cancellation_during_dwell_scales_batch_back_down(
    core_api, apps_api, workload
):
    dwell_started = asyncio.Event()

    async def _sleep(seconds):
        dwell_started.set()
        await asyncio.Event().wait()

    scheduler = BatchScheduler(
        core_api,
        apps_api,
        workload,
        SchedulerConfig(batch_size=2, dwell_seconds=30),
        sleep=_sleep,
    )
    task = asyncio.ensure_future(
        scheduler.run_batch(Batch(1, ("001", "002")), LoadRunSummary())
    )
    await dwell_started.wait()
    assert scheduler.phase == BatchPhase.DWELL

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    replicas = [
        c.kwargs["body"]["spec"]["replicas"]
        for c in apps_api.patch_namespaced_deployment_scale.await_args_list
    ]
    assert replicas == [1, 1, 0, 0]
