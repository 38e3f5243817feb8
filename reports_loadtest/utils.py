# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Helper utilities for the load test tool.
"""

import logging
import sys

_STATUS_PREFIXES = {
    "INFO": "[INFO]",
    "SUCCESS": "[SUCCESS]",
    "WARNING": "[WARNING]",
    "ERROR": "[ERROR]",
}


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for the load test tool.

    Args:
        verbose: If True, set log level to DEBUG; otherwise INFO
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # The kubernetes client logs every request body at DEBUG.
    logging.getLogger("kubernetes_asyncio").setLevel(logging.WARNING)


def print_status(level: str, message: str) -> None:
    """
    Print a user-facing status line.

    Args:
        level: One of INFO, SUCCESS, WARNING, ERROR
        message: Text to print after the level prefix
    """
    prefix = _STATUS_PREFIXES.get(level.upper())
    if prefix is None:
        raise ValueError(f"Unknown status level: {level}")
    stream = sys.stderr if level.upper() == "ERROR" else sys.stdout
    print(f"{prefix} {message}", file=stream)


def print_banner(title: str) -> None:
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def format_duration(seconds: float) -> str:
    """Format a duration as ``"Xm Ys"``."""
    total = int(seconds)
    return f"{total // 60}m {total % 60}s"
