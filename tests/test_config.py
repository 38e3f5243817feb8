# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for LoadTestConfig loading and validation."""

import argparse

import pytest

from reports_loadtest.config import LoadTestConfig, WorkloadConfig
from reports_loadtest.errors import ConfigError

pytestmark = [pytest.mark.unit]


def _args(**kwargs):
    return argparse.Namespace(**kwargs)


def test_defaults_match_reference_cluster(monkeypatch):
    monkeypatch.delenv("AWS_REGION", raising=False)
    cfg = LoadTestConfig()

    assert cfg.cluster.name == "report-server-test"
    assert cfg.cluster.region == "us-west-1"
    assert cfg.workload.total_namespaces == 200
    assert cfg.workload.namespace_prefix == "load-test"
    assert cfg.scheduler.batch_size == 10
    assert cfg.scheduler.dwell_seconds == 30
    assert cfg.scheduler.cooldown_seconds == 10
    assert cfg.scheduler.wait_mode == "fixed"
    assert cfg.lock_namespace == "default"
    cfg.validate()


def test_environment_supplies_database_defaults(monkeypatch):
    monkeypatch.setenv("REPORTS_DB_HOST", "db.example.internal")
    monkeypatch.setenv("REPORTS_DB_PORT", "6432")
    monkeypatch.setenv("AWS_REGION", "eu-central-1")

    cfg = LoadTestConfig()

    assert cfg.database.host == "db.example.internal"
    assert cfg.database.port == 6432
    assert cfg.cluster.region == "eu-central-1"


def test_expected_totals():
    w = WorkloadConfig(total_namespaces=200)
    assert w.expected_namespaces == 200
    assert w.expected_service_accounts == 200
    assert w.expected_configmaps == 400
    assert w.expected_deployments == 200


def test_effective_concurrency_defaults_to_batch_size():
    cfg = LoadTestConfig()
    assert cfg.scheduler.effective_concurrency == 10
    cfg.scheduler.max_concurrency = 4
    assert cfg.scheduler.effective_concurrency == 4


def test_from_yaml(tmp_path):
    path = tmp_path / "loadtest.yaml"
    path.write_text(
        "workload:\n"
        "  total_namespaces: 50\n"
        "  namespace_prefix: perf\n"
        "scheduler:\n"
        "  batch_size: 5\n"
        "  wait_mode: ready\n"
        "lock_namespace: loadtest-system\n"
    )

    cfg = LoadTestConfig.from_yaml(str(path))

    assert cfg.workload.total_namespaces == 50
    assert cfg.workload.namespace_prefix == "perf"
    assert cfg.scheduler.batch_size == 5
    assert cfg.scheduler.wait_mode == "ready"
    assert cfg.lock_namespace == "loadtest-system"
    assert cfg.cluster.name == "report-server-test"


def test_from_yaml_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert LoadTestConfig.from_yaml(str(path)).workload.total_namespaces == 200


@pytest.mark.parametrize(
    "content,message",
    [
        ("bogus:\n  a: 1\n", "Unknown configuration section"),
        ("workload:\n  namespaces: 5\n", "Unknown keys in 'workload'"),
        ("workload: 5\n", "must be a mapping"),
        ("- a\n- b\n", "must contain a mapping"),
        ("workload: [unclosed\n", "Invalid YAML"),
    ],
)
def test_from_yaml_rejects_bad_files(tmp_path, content, message):
    path = tmp_path / "bad.yaml"
    path.write_text(content)
    with pytest.raises(ConfigError, match=message):
        LoadTestConfig.from_yaml(str(path))


def test_from_yaml_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="Cannot read config file"):
        LoadTestConfig.from_yaml(str(tmp_path / "missing.yaml"))


def test_from_args_overrides_file(tmp_path):
    path = tmp_path / "loadtest.yaml"
    path.write_text("workload:\n  total_namespaces: 50\nscheduler:\n  batch_size: 5\n")

    cfg = LoadTestConfig.from_args(
        _args(config=str(path), count=20, batch_size=None, check_eks=False)
    )

    assert cfg.workload.total_namespaces == 20
    assert cfg.scheduler.batch_size == 5
    assert cfg.cluster.check_eks is False


def test_from_args_without_config_uses_defaults():
    cfg = LoadTestConfig.from_args(_args(prefix="perf", dwell=1.5, lock_namespace="x"))
    assert cfg.workload.namespace_prefix == "perf"
    assert cfg.scheduler.dwell_seconds == 1.5
    assert cfg.lock_namespace == "x"


@pytest.mark.parametrize(
    "section,attr,value,message",
    [
        ("workload", "total_namespaces", 0, "total_namespaces must be positive"),
        ("workload", "namespace_prefix", "Load_Test", "not a valid DNS label"),
        ("workload", "namespace_prefix", "x" * 60, "namespace names would be"),
        ("workload", "owner", "", "owner is required"),
        ("workload", "apply_concurrency", 0, "apply_concurrency must be positive"),
        ("scheduler", "batch_size", 0, "batch_size must be positive"),
        ("scheduler", "dwell_seconds", -1, "must not be negative"),
        ("scheduler", "wait_mode", "eventually", "wait_mode must be one of"),
        ("scheduler", "max_concurrency", 0, "max_concurrency must be positive"),
    ],
)
def test_validate_rejects(section, attr, value, message):
    cfg = LoadTestConfig()
    setattr(getattr(cfg, section), attr, value)
    with pytest.raises(ConfigError, match=message):
        cfg.validate()


def test_validate_reports_every_problem():
    cfg = LoadTestConfig()
    cfg.workload.total_namespaces = 0
    cfg.scheduler.batch_size = 0

    with pytest.raises(ConfigError) as exc_info:
        cfg.validate()

    assert "total_namespaces" in str(exc_info.value)
    assert "batch_size" in str(exc_info.value)
    assert exc_info.value.exit_code == 2


def test_validate_database(monkeypatch):
    monkeypatch.delenv("REPORTS_DB_HOST", raising=False)
    cfg = LoadTestConfig()
    with pytest.raises(ConfigError, match="host or database.rds_instance_id"):
        cfg.validate_database()

    cfg.database.rds_instance_id = "reports-server-db"
    cfg.validate_database()
