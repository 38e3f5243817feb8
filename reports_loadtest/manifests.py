# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Manifest builder for load-test objects.

Builds the Namespace, ServiceAccount, ConfigMaps and Deployment created in
every load-test namespace. Labels are derived only from the identifier and the
workload configuration, so re-applying a manifest always writes the same labels.
"""

from typing import Dict, List

from reports_loadtest.config import WorkloadConfig
from reports_loadtest.naming import namespace_name

SERVICE_ACCOUNT_NAME = "demo-sa"
CONFIGMAP_NAMES = ("cm-01", "cm-02")
DEPLOYMENT_NAME = "test-deployment"
APP_LABEL = "test-app"
APP_VERSION = "v1.0"


class WorkloadManifestBuilder:
    """
    Builds manifests for one identifier.

    Example:
        builder = WorkloadManifestBuilder("007", WorkloadConfig())
        builder.namespace()["metadata"]["name"]  # "load-test-007"
    """

    def __init__(self, identifier: str, workload: WorkloadConfig):
        self.identifier = identifier
        self.workload = workload
        self.namespace_name = namespace_name(identifier, workload.namespace_prefix)

    def _object_labels(self) -> Dict[str, str]:
        return {
            "owner": self.workload.owner,
            "purpose": self.workload.purpose,
        }

    def _app_labels(self) -> Dict[str, str]:
        return {"app": APP_LABEL, "version": APP_VERSION}

    def namespace_labels(self) -> Dict[str, str]:
        return {
            **self._object_labels(),
            "created-by": self.workload.created_by,
            "sequence": self.identifier,
        }

    def namespace(self) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {
                "name": self.namespace_name,
                "labels": self.namespace_labels(),
            },
        }

    def service_account(self) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {
                "name": SERVICE_ACCOUNT_NAME,
                "namespace": self.namespace_name,
                "labels": self._object_labels(),
            },
        }

    def configmaps(self) -> List[dict]:
        """Build cm-01 and cm-02; each holds two keys valued by the identifier."""
        maps = []
        for n, name in enumerate(CONFIGMAP_NAMES):
            first, second = 2 * n + 1, 2 * n + 2
            maps.append(
                {
                    "apiVersion": "v1",
                    "kind": "ConfigMap",
                    "metadata": {
                        "name": name,
                        "namespace": self.namespace_name,
                        "labels": self._object_labels(),
                    },
                    "data": {
                        f"key{first}": f"value{first}-{self.identifier}",
                        f"key{second}": f"value{second}-{self.identifier}",
                    },
                }
            )
        return maps

    def deployment(self, replicas: int = 0) -> dict:
        pod_labels = {**self._app_labels(), **self._object_labels()}
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": DEPLOYMENT_NAME,
                "namespace": self.namespace_name,
                "labels": pod_labels,
            },
            "spec": {
                "replicas": replicas,
                "selector": {"matchLabels": self._app_labels()},
                "template": {
                    "metadata": {"labels": pod_labels},
                    "spec": {
                        "serviceAccountName": SERVICE_ACCOUNT_NAME,
                        "containers": [
                            {
                                "name": "test-container",
                                "image": self.workload.image,
                                "securityContext": {
                                    "privileged": False,
                                    "runAsNonRoot": True,
                                    "runAsUser": 1000,
                                },
                                "resources": {
                                    "requests": {"memory": "64Mi", "cpu": "250m"},
                                    "limits": {"memory": "128Mi", "cpu": "500m"},
                                },
                                "ports": [{"containerPort": 80}],
                                "livenessProbe": {
                                    "httpGet": {"path": "/", "port": 80},
                                    "initialDelaySeconds": 30,
                                    "periodSeconds": 10,
                                },
                                "readinessProbe": {
                                    "httpGet": {"path": "/", "port": 80},
                                    "initialDelaySeconds": 5,
                                    "periodSeconds": 5,
                                },
                            }
                        ],
                    },
                },
            },
        }

    def workloads(self) -> List[dict]:
        """Namespaced objects in apply order."""
        return [self.service_account(), *self.configmaps(), self.deployment()]


def purpose_selector(workload: WorkloadConfig) -> str:
    return f"purpose={workload.purpose}"
