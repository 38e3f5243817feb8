# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Configuration for the load test tool.

Provides dataclasses describing the target cluster, the test workload, the
batch scheduler and the Reports Server database. A resolved LoadTestConfig is
passed explicitly into every component.
"""

import argparse
import os
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import yaml

from reports_loadtest.errors import ConfigError

WAIT_MODES = ("fixed", "ready")

# Binds port 80 as root, so it never becomes Ready under the runAsNonRoot
# (uid 1000) security context of the test Deployment.
DEFAULT_IMAGE = "nginx:alpine"

# DNS-1123 label, the rule Kubernetes applies to namespace names
_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_MAX_NAMESPACE_LENGTH = 63


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(name)
    return value if value else default


@dataclass
class ClusterConfig:
    """
    Target cluster and the components expected to run in it.

    Attributes:
        name: EKS cluster name
        region: AWS region of the cluster
        aws_profile: Optional named AWS profile for boto3 sessions
        kyverno_namespace: Namespace running Kyverno and the Reports Server
        monitoring_namespace: Namespace running the monitoring stack
        min_kyverno_pods: Running pods required in the Kyverno namespace
        min_monitoring_pods: Running pods required in the monitoring namespace
        check_eks: Whether preflight queries the EKS API for cluster status
    """

    name: str = "report-server-test"
    region: str = field(default_factory=lambda: _env("AWS_REGION", "us-west-1"))
    aws_profile: Optional[str] = field(default_factory=lambda: _env("AWS_PROFILE"))
    kyverno_namespace: str = "kyverno"
    monitoring_namespace: str = "monitoring"
    min_kyverno_pods: int = 2
    min_monitoring_pods: int = 3
    check_eks: bool = True


@dataclass
class WorkloadConfig:
    """
    Test objects created in every load-test namespace.

    Attributes:
        namespace_prefix: Prefix of generated namespace names
        total_namespaces: Number of namespaces (N)
        identifier_width: Zero-padded width of the namespace suffix
        start_index: First identifier, used to resume from an offset
        owner: Value of the ``owner`` label required by the cluster policies
        purpose: Value of the ``purpose`` label, also used to select test namespaces
        created_by: Value of the ``created-by`` namespace label
        image: Container image for the test Deployment
        apply_concurrency: Identifiers applied concurrently
        api_timeout: Timeout in seconds for a single API call
    """

    namespace_prefix: str = "load-test"
    total_namespaces: int = 200
    identifier_width: int = 3
    start_index: int = 1
    owner: str = "loadtest"
    purpose: str = "load-testing"
    created_by: str = "test-plan"
    image: str = DEFAULT_IMAGE
    apply_concurrency: int = 10
    api_timeout: float = 30.0

    @property
    def expected_namespaces(self) -> int:
        return self.total_namespaces

    @property
    def expected_service_accounts(self) -> int:
        return self.total_namespaces

    @property
    def expected_configmaps(self) -> int:
        return self.total_namespaces * 2

    @property
    def expected_deployments(self) -> int:
        return self.total_namespaces


@dataclass
class SchedulerConfig:
    """
    Batch scheduler settings.

    Attributes:
        batch_size: Namespaces scaled together (B)
        dwell_seconds: Wait after scaling a batch up
        cooldown_seconds: Wait after scaling a batch down
        wait_mode: "fixed" sleeps only; "ready" polls replicas before each wait
        readiness_timeout: Upper bound on a readiness poll in "ready" mode
        max_concurrency: Concurrent scale calls; defaults to the batch size
    """

    batch_size: int = 10
    dwell_seconds: float = 30.0
    cooldown_seconds: float = 10.0
    wait_mode: str = "fixed"
    readiness_timeout: float = 120.0
    max_concurrency: Optional[int] = None

    @property
    def effective_concurrency(self) -> int:
        return self.max_concurrency or self.batch_size


@dataclass
class DatabaseConfig:
    """
    Connection settings for the Reports Server PostgreSQL database.

    Attributes:
        host: Database host; discovered from RDS when empty and rds_instance_id is set
        port: Database port
        name: Database name
        user: Database user
        password_ref: Secret reference, see reports_loadtest.secret_store
        rds_instance_id: RDS instance identifier used for endpoint discovery
        connect_timeout: Connection timeout in seconds
    """

    host: Optional[str] = field(default_factory=lambda: _env("REPORTS_DB_HOST"))
    port: int = field(default_factory=lambda: int(_env("REPORTS_DB_PORT", "5432")))
    name: str = field(default_factory=lambda: _env("REPORTS_DB_NAME", "reportsdb"))
    user: str = field(default_factory=lambda: _env("REPORTS_DB_USER", "reportsuser"))
    password_ref: str = "env:REPORTS_DB_PASSWORD"
    rds_instance_id: Optional[str] = None
    connect_timeout: float = 10.0


@dataclass
class LoadTestConfig:
    """Combined configuration passed into every component."""

    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    workload: WorkloadConfig = field(default_factory=WorkloadConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    lock_namespace: str = "default"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoadTestConfig":
        """
        Build a config from a nested mapping (the YAML file layout).

        Raises:
            ConfigError: On unknown sections or keys
        """
        sections = {
            "cluster": ClusterConfig,
            "workload": WorkloadConfig,
            "scheduler": SchedulerConfig,
            "database": DatabaseConfig,
        }
        kwargs: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            if key == "lock_namespace":
                kwargs[key] = value
                continue
            section_cls = sections.get(key)
            if section_cls is None:
                raise ConfigError(f"Unknown configuration section: {key}")
            if not isinstance(value, dict):
                raise ConfigError(f"Configuration section '{key}' must be a mapping")
            known = {f.name for f in fields(section_cls)}
            unknown = sorted(set(value) - known)
            if unknown:
                raise ConfigError(f"Unknown keys in '{key}': {', '.join(unknown)}")
            kwargs[key] = section_cls(**value)
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str) -> "LoadTestConfig":
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data or {})

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "LoadTestConfig":
        """
        Create a LoadTestConfig from CLI arguments.

        Values come from --config when given, then any flag the user set
        overrides the matching field.

        Args:
            args: Parsed CLI arguments

        Returns:
            LoadTestConfig instance
        """
        config_path = getattr(args, "config", None)
        cfg = cls.from_yaml(config_path) if config_path else cls()

        for arg_name, (section, attr) in _ARG_OVERRIDES.items():
            value = getattr(args, arg_name, None)
            if value is None:
                continue
            target = cfg if section is None else getattr(cfg, section)
            setattr(target, attr, value)
        return cfg

    def validate(self) -> None:
        """
        Check the configuration for values the tool cannot work with.

        Raises:
            ConfigError: Describing every problem found
        """
        problems = []
        w, s = self.workload, self.scheduler

        if not self.cluster.name:
            problems.append("cluster.name is required")
        if not self.cluster.region:
            problems.append("cluster.region is required")
        if w.total_namespaces <= 0:
            problems.append("workload.total_namespaces must be positive")
        if w.identifier_width <= 0:
            problems.append("workload.identifier_width must be positive")
        if w.start_index < 0:
            problems.append("workload.start_index must not be negative")
        if w.apply_concurrency <= 0:
            problems.append("workload.apply_concurrency must be positive")
        if w.api_timeout <= 0:
            problems.append("workload.api_timeout must be positive")
        if not _DNS_LABEL.match(w.namespace_prefix or ""):
            problems.append(
                f"workload.namespace_prefix '{w.namespace_prefix}' is not a valid DNS label"
            )
        elif w.total_namespaces > 0 and w.identifier_width > 0:
            last = w.start_index + w.total_namespaces - 1
            longest = len(w.namespace_prefix) + 1 + max(w.identifier_width, len(str(last)))
            if longest > _MAX_NAMESPACE_LENGTH:
                problems.append(
                    f"namespace names would be {longest} characters "
                    f"(limit {_MAX_NAMESPACE_LENGTH})"
                )
        if not w.owner:
            problems.append("workload.owner is required by the cluster policies")
        if s.batch_size <= 0:
            problems.append("scheduler.batch_size must be positive")
        if s.dwell_seconds < 0 or s.cooldown_seconds < 0:
            problems.append("scheduler dwell and cooldown must not be negative")
        if s.wait_mode not in WAIT_MODES:
            problems.append(
                f"scheduler.wait_mode must be one of {', '.join(WAIT_MODES)}"
            )
        if s.readiness_timeout <= 0:
            problems.append("scheduler.readiness_timeout must be positive")
        if s.max_concurrency is not None and s.max_concurrency <= 0:
            problems.append("scheduler.max_concurrency must be positive")

        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))

    def validate_database(self) -> None:
        db = self.database
        problems = []
        if not db.host and not db.rds_instance_id:
            problems.append("database.host or database.rds_instance_id is required")
        if not db.name:
            problems.append("database.name is required")
        if not db.user:
            problems.append("database.user is required")
        if not db.password_ref:
            problems.append("database.password_ref is required")
        if problems:
            raise ConfigError("Invalid database configuration: " + "; ".join(problems))


# CLI argument name -> (config section, attribute); None targets LoadTestConfig
_ARG_OVERRIDES = {
    "cluster_name": ("cluster", "name"),
    "region": ("cluster", "region"),
    "aws_profile": ("cluster", "aws_profile"),
    "kyverno_namespace": ("cluster", "kyverno_namespace"),
    "monitoring_namespace": ("cluster", "monitoring_namespace"),
    "check_eks": ("cluster", "check_eks"),
    "prefix": ("workload", "namespace_prefix"),
    "count": ("workload", "total_namespaces"),
    "width": ("workload", "identifier_width"),
    "start": ("workload", "start_index"),
    "owner": ("workload", "owner"),
    "image": ("workload", "image"),
    "apply_concurrency": ("workload", "apply_concurrency"),
    "api_timeout": ("workload", "api_timeout"),
    "batch_size": ("scheduler", "batch_size"),
    "dwell": ("scheduler", "dwell_seconds"),
    "cooldown": ("scheduler", "cooldown_seconds"),
    "wait_mode": ("scheduler", "wait_mode"),
    "readiness_timeout": ("scheduler", "readiness_timeout"),
    "max_concurrency": ("scheduler", "max_concurrency"),
    "db_host": ("database", "host"),
    "db_port": ("database", "port"),
    "db_name": ("database", "name"),
    "db_user": ("database", "user"),
    "db_password_ref": ("database", "password_ref"),
    "rds_instance_id": ("database", "rds_instance_id"),
    "lock_namespace": (None, "lock_namespace"),
}
