# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for WorkloadManifestBuilder."""

import pytest

from reports_loadtest.config import WorkloadConfig
from reports_loadtest.manifests import (
    CONFIGMAP_NAMES,
    DEPLOYMENT_NAME,
    SERVICE_ACCOUNT_NAME,
    WorkloadManifestBuilder,
    purpose_selector,
)

pytestmark = [pytest.mark.unit]


@pytest.fixture
def builder():
    return WorkloadManifestBuilder("007", WorkloadConfig())


def test_namespace_name_and_labels(builder):
    ns = builder.namespace()
    assert ns["kind"] == "Namespace"
    assert ns["metadata"]["name"] == "load-test-007"
    assert ns["metadata"]["labels"] == {
        "owner": "loadtest",
        "purpose": "load-testing",
        "created-by": "test-plan",
        "sequence": "007",
    }


def test_every_namespaced_object_carries_owner_label(builder):
    for manifest in builder.workloads():
        assert manifest["metadata"]["namespace"] == "load-test-007"
        assert manifest["metadata"]["labels"]["owner"] == "loadtest"


def test_workloads_order(builder):
    kinds = [(m["kind"], m["metadata"]["name"]) for m in builder.workloads()]
    assert kinds == [
        ("ServiceAccount", SERVICE_ACCOUNT_NAME),
        ("ConfigMap", CONFIGMAP_NAMES[0]),
        ("ConfigMap", CONFIGMAP_NAMES[1]),
        ("Deployment", DEPLOYMENT_NAME),
    ]


def test_configmap_keys(builder):
    cm1, cm2 = builder.configmaps()
    assert set(cm1["data"]) == {"key1", "key2"}
    assert set(cm2["data"]) == {"key3", "key4"}
    assert cm1["data"]["key1"] == "value1-007"
    assert cm2["data"]["key4"] == "value4-007"


def test_deployment_starts_at_zero_replicas(builder):
    deployment = builder.deployment()
    spec = deployment["spec"]
    pod = spec["template"]["spec"]
    container = pod["containers"][0]

    assert spec["replicas"] == 0
    assert spec["selector"]["matchLabels"] == {"app": "test-app", "version": "v1.0"}
    assert spec["template"]["metadata"]["labels"]["owner"] == "loadtest"
    assert pod["serviceAccountName"] == SERVICE_ACCOUNT_NAME
    assert container["image"] == "nginx:alpine"
    assert container["securityContext"]["runAsNonRoot"] is True
    assert container["securityContext"]["privileged"] is False
    assert container["resources"]["limits"] == {"memory": "128Mi", "cpu": "500m"}
    assert "readinessProbe" in container and "livenessProbe" in container


def test_builder_honours_workload_overrides():
    workload = WorkloadConfig(namespace_prefix="perf", owner="qa", image="busybox")
    builder = WorkloadManifestBuilder("0042", workload)

    assert builder.namespace()["metadata"]["name"] == "perf-0042"
    assert builder.service_account()["metadata"]["labels"]["owner"] == "qa"
    container = builder.deployment()["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "busybox"


def test_purpose_selector():
    assert purpose_selector(WorkloadConfig()) == "purpose=load-testing"
