# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the run lock and the Kubernetes call helpers."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from kubernetes_asyncio.client import exceptions

from reports_loadtest.errors import PrerequisiteError, RunLockedError
from reports_loadtest.kube import (
    LOCK_NAME,
    KubeSession,
    RunLock,
    call_api,
    describe_error,
    run_bounded,
)

pytestmark = [pytest.mark.unit]


@pytest.fixture
def core_api():
    return AsyncMock()


@pytest.mark.asyncio
async def test_run_lock_acquire_and_release(core_api):
    lock = RunLock(core_api, namespace="default", command="load", holder="host-1")

    async with lock:
        kwargs = core_api.create_namespaced_config_map.await_args.kwargs
        assert kwargs["namespace"] == "default"
        assert kwargs["body"]["metadata"]["name"] == LOCK_NAME
        assert kwargs["body"]["data"]["holder"] == "host-1"
        assert kwargs["body"]["data"]["command"] == "load"

    core_api.delete_namespaced_config_map.assert_awaited_once_with(
        name=LOCK_NAME, namespace="default"
    )


@pytest.mark.asyncio
async def test_run_lock_conflict_names_holder(core_api):
    core_api.create_namespaced_config_map.side_effect = exceptions.ApiException(
        status=409, reason="Conflict"
    )
    core_api.read_namespaced_config_map.return_value = SimpleNamespace(
        data={"holder": "other-host-99", "command": "run", "started": "2026-01-01"}
    )

    with pytest.raises(RunLockedError, match="other-host-99"):
        async with RunLock(core_api, command="setup"):
            pytest.fail("lock body must not run")

    core_api.delete_namespaced_config_map.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_lock_propagates_other_errors(core_api):
    core_api.create_namespaced_config_map.side_effect = exceptions.ApiException(
        status=403, reason="Forbidden"
    )
    with pytest.raises(exceptions.ApiException):
        await RunLock(core_api).acquire()


@pytest.mark.asyncio
async def test_run_lock_released_when_body_fails(core_api):
    with pytest.raises(RuntimeError):
        async with RunLock(core_api):
            raise RuntimeError("boom")
    core_api.delete_namespaced_config_map.assert_awaited_once()


@pytest.mark.asyncio
async def test_force_release_ignores_missing_lock(core_api):
    core_api.delete_namespaced_config_map.side_effect = exceptions.ApiException(
        status=404, reason="Not Found"
    )
    await RunLock(core_api).release(force=True)
    core_api.delete_namespaced_config_map.assert_awaited_once()


@pytest.mark.asyncio
async def test_release_without_acquire_is_noop(core_api):
    await RunLock(core_api).release()
    core_api.delete_namespaced_config_map.assert_not_awaited()


def test_describe_error_uses_api_message():
    error = exceptions.ApiException(status=403, reason="Forbidden")
    error.body = '{"message": "admission webhook denied the request"}'
    assert describe_error(error) == "403 Forbidden: admission webhook denied the request"


def test_describe_error_variants():
    assert describe_error(exceptions.ApiException(status=500, reason="Error")) == (
        "500 Error"
    )
    assert describe_error(asyncio.TimeoutError()) == "timed out"
    assert describe_error(ValueError("bad")) == "ValueError: bad"


@pytest.mark.asyncio
async def test_call_api_times_out():
    async def _slow():
        await asyncio.sleep(10)

    with pytest.raises(asyncio.TimeoutError):
        await call_api(_slow, timeout=0.01)


@pytest.mark.asyncio
async def test_run_bounded_limits_concurrency():
    running = 0
    peak = 0
    seen = []

    async def _worker(item):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0)
        seen.append(item)
        running -= 1

    await run_bounded([str(i) for i in range(20)], _worker, limit=3)

    assert peak <= 3
    assert sorted(seen) == sorted(str(i) for i in range(20))


@pytest.mark.asyncio
async def test_run_bounded_propagates_worker_exception():
    async def _worker(item):
        if item == "2":
            raise RuntimeError("unexpected")
        await asyncio.sleep(0)

    with pytest.raises(RuntimeError):
        await run_bounded(["1", "2", "3"], _worker, limit=2)


@pytest.mark.asyncio
async def test_session_falls_back_to_kubeconfig():
    with patch("reports_loadtest.kube.config") as mock_config, patch(
        "reports_loadtest.kube.client"
    ) as mock_client:
        mock_config.ConfigException = Exception
        mock_config.load_incluster_config.side_effect = Exception("not in cluster")
        mock_config.load_kube_config = AsyncMock()
        mock_client.ApiClient.return_value = MagicMock(close=AsyncMock())

        async with KubeSession() as session:
            assert session.in_cluster is False
            assert session.core is mock_client.CoreV1Api.return_value

        mock_config.load_kube_config.assert_awaited_once()


@pytest.mark.asyncio
async def test_session_without_any_config():
    with patch("reports_loadtest.kube.config") as mock_config:
        mock_config.ConfigException = Exception
        mock_config.load_incluster_config.side_effect = Exception("not in cluster")
        mock_config.load_kube_config = AsyncMock(side_effect=Exception("no kubeconfig"))

        with pytest.raises(PrerequisiteError, match="No usable Kubernetes configuration"):
            await KubeSession().init()
