# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Kubernetes API session, call helpers and the cluster-wide run lock.
"""

import asyncio
import json
import logging
import os
import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

import aiohttp
from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import exceptions

from reports_loadtest.errors import PrerequisiteError, RunLockedError
from reports_loadtest.polling import retry_transient

logger = logging.getLogger(__name__)

LOCK_NAME = "reports-loadtest-lock"

T = TypeVar("T")


@dataclass
class KubeSession:
    """Holds the API objects used by every component."""

    _api_client: Optional[client.ApiClient] = None
    core: Optional[client.CoreV1Api] = None
    apps: Optional[client.AppsV1Api] = None
    custom: Optional[client.CustomObjectsApi] = None
    in_cluster: bool = False

    async def init(self) -> "KubeSession":
        try:
            config.load_incluster_config()
            self.in_cluster = True
            logger.info("Using in-cluster Kubernetes configuration")
        except config.ConfigException:
            try:
                await config.load_kube_config()
            except (config.ConfigException, OSError) as e:
                raise PrerequisiteError(
                    f"No usable Kubernetes configuration found: {e}"
                ) from e
            logger.info("Using kubeconfig file")

        self._api_client = client.ApiClient()
        self.core = client.CoreV1Api(self._api_client)
        self.apps = client.AppsV1Api(self._api_client)
        self.custom = client.CustomObjectsApi(self._api_client)
        return self

    async def close(self) -> None:
        if self._api_client is not None:
            await self._api_client.close()
            self._api_client = None

    async def __aenter__(self) -> "KubeSession":
        return await self.init()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


@dataclass
class RunLock:
    """
    Prevents two mutating runs against the same cluster.

    The lock is a ConfigMap; the API server rejects a second create with 409.
    """

    core: client.CoreV1Api
    namespace: str = "default"
    command: str = ""
    holder: str = field(
        default_factory=lambda: f"{socket.gethostname()}-{os.getpid()}"
    )
    _held: bool = False

    def _manifest(self) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": LOCK_NAME,
                "namespace": self.namespace,
                "labels": {"app.kubernetes.io/managed-by": "reports-loadtest"},
            },
            "data": {
                "holder": self.holder,
                "command": self.command,
                "started": datetime.now(timezone.utc).isoformat(),
            },
        }

    async def acquire(self) -> None:
        try:
            await self.core.create_namespaced_config_map(
                namespace=self.namespace, body=self._manifest()
            )
        except exceptions.ApiException as e:
            if e.status != 409:
                raise
            owner = await self._describe_holder()
            raise RunLockedError(
                f"Another run holds {self.namespace}/{LOCK_NAME} ({owner}); "
                "use 'cleanup --force-unlock' if it is stale"
            ) from e
        self._held = True
        logger.info(f"Acquired run lock {self.namespace}/{LOCK_NAME}")

    async def _describe_holder(self) -> str:
        try:
            existing = await self.core.read_namespaced_config_map(
                name=LOCK_NAME, namespace=self.namespace
            )
        except exceptions.ApiException:
            return "holder unknown"
        data = existing.data or {}
        return (
            f"holder={data.get('holder', '?')}, command={data.get('command', '?')}, "
            f"started={data.get('started', '?')}"
        )

    async def release(self, force: bool = False) -> None:
        if not self._held and not force:
            return
        try:
            await self.core.delete_namespaced_config_map(
                name=LOCK_NAME, namespace=self.namespace
            )
            logger.info(f"Released run lock {self.namespace}/{LOCK_NAME}")
        except exceptions.ApiException as e:
            if e.status != 404:
                logger.warning(f"Error releasing run lock: {e}")
        self._held = False

    async def __aenter__(self) -> "RunLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
        return False


API_ERRORS = (exceptions.ApiException, asyncio.TimeoutError, aiohttp.ClientError)


def describe_error(error: BaseException) -> str:
    """Short description of an API failure for logs and results."""
    if isinstance(error, exceptions.ApiException):
        message = None
        if error.body:
            try:
                message = json.loads(error.body).get("message")
            except (ValueError, AttributeError):
                message = None
        if message:
            return f"{error.status} {error.reason}: {message}"
        return f"{error.status} {error.reason}"
    if isinstance(error, asyncio.TimeoutError):
        return "timed out"
    return f"{type(error).__name__}: {error}"


async def call_api(
    call: Callable[[], Awaitable[T]], timeout: float, attempts: int = 3
) -> T:
    """Run one API call with transient-error retries, bounded by ``timeout``."""
    return await asyncio.wait_for(retry_transient(call, attempts=attempts), timeout)


async def run_bounded(
    items: Iterable[str],
    worker: Callable[[str], Awaitable[None]],
    limit: int,
) -> None:
    """
    Run ``worker`` for every item with at most ``limit`` running at once.

    Workers are expected to record their own failures; an exception escaping a
    worker cancels the remaining ones and propagates.
    """
    semaphore = asyncio.Semaphore(limit)

    async def _guarded(item: str) -> None:
        async with semaphore:
            await worker(item)

    tasks = [asyncio.ensure_future(_guarded(item)) for item in items]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
