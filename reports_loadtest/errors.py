# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Exception types raised by the load test tool."""


class LoadTestError(Exception):
    """Base class for all load test failures."""

    exit_code = 1


class ConfigError(LoadTestError):
    """Configuration is missing a required value or holds an invalid one."""

    exit_code = 2


class PrerequisiteError(LoadTestError):
    """A required tool, credential or cluster component is not available."""


class InfrastructureNotReady(LoadTestError):
    """A bounded wait for some condition ran out of time."""

    def __init__(self, description: str, timeout: float):
        super().__init__(f"{description} timed out after {timeout:.0f}s")
        self.description = description
        self.timeout = timeout


class RunLockedError(LoadTestError):
    """Another run already holds the cluster run lock."""


class VerificationError(LoadTestError):
    """Observed object or report counts do not match the expected totals."""
