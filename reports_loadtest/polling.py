# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Bounded waiting and retry primitives.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from kubernetes_asyncio.client import exceptions

from reports_loadtest.errors import InfrastructureNotReady

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses worth retrying: throttling and server-side failures
TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})

SleepFn = Callable[[float], Awaitable[Any]]


async def poll_until(
    condition: Callable[[], Awaitable[T]],
    timeout: float,
    description: str,
    initial_interval: float = 1.0,
    max_interval: float = 30.0,
    factor: float = 2.0,
    sleep: SleepFn = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Call ``condition`` until it returns a truthy value.

    The delay between attempts starts at ``initial_interval`` and grows by
    ``factor`` up to ``max_interval``; the last delay is clipped so the total
    wait never exceeds ``timeout``.

    Args:
        condition: Coroutine function returning a truthy value when satisfied
        timeout: Maximum time to wait in seconds
        description: Human readable name of the condition, used in logs and errors
        initial_interval: First delay between attempts
        max_interval: Upper bound on the delay
        factor: Multiplier applied to the delay after each attempt
        sleep: Coroutine used to wait between attempts
        clock: Monotonic time source

    Returns:
        The truthy value returned by ``condition``

    Raises:
        InfrastructureNotReady: If the condition is still false after ``timeout``
    """
    start = clock()
    interval = initial_interval
    attempt = 0

    while True:
        attempt += 1
        result = await condition()
        if result:
            logger.debug(
                f"{description}: satisfied after {attempt} attempt(s) "
                f"({clock() - start:.1f}s)"
            )
            return result

        elapsed = clock() - start
        remaining = timeout - elapsed
        if remaining <= 0:
            raise InfrastructureNotReady(description, timeout)

        delay = min(interval, max_interval, remaining)
        logger.debug(
            f"Waiting for {description}: attempt {attempt}, "
            f"next check in {delay:.1f}s ({elapsed:.1f}s elapsed)"
        )
        await sleep(delay)
        interval = interval * factor


async def retry_transient(
    call: Callable[[], Awaitable[T]],
    attempts: int = 3,
    initial_delay: float = 0.5,
    factor: float = 2.0,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """
    Run an API call, retrying throttling and 5xx responses with backoff.

    Any other ApiException, or a transient one on the final attempt, propagates.
    """
    if attempts <= 0:
        raise ValueError(f"attempts must be positive: {attempts}")
    delay = initial_delay
    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except exceptions.ApiException as e:
            if e.status not in TRANSIENT_STATUSES or attempt == attempts:
                raise
            logger.debug(
                f"Transient API error {e.status} (attempt {attempt}/{attempts}), "
                f"retrying in {delay:.1f}s"
            )
        await sleep(delay)
        delay *= factor
    raise AssertionError("unreachable")
