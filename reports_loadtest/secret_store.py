# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Secret lookup for the database password.

A secret reference is ``<scheme>:<location>``:

    env:REPORTS_DB_PASSWORD
    aws-secretsmanager:reports-server/db#password
    k8s:kyverno/postgresql-credentials#password

The ``#key`` suffix selects a field from a JSON secret string (Secrets Manager)
or a data key (Kubernetes Secret).
"""

import asyncio
import base64
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from kubernetes_asyncio import client
from kubernetes_asyncio.client import exceptions

from reports_loadtest.errors import ConfigError, PrerequisiteError

logger = logging.getLogger(__name__)


def parse_reference(reference: str) -> Tuple[str, str, Optional[str]]:
    """Split a reference into (scheme, location, key)."""
    scheme, sep, rest = reference.partition(":")
    if not sep or not rest:
        raise ConfigError(
            f"Invalid secret reference '{reference}', expected <scheme>:<location>"
        )
    location, _, key = rest.partition("#")
    return scheme, location, key or None


class SecretProvider(ABC):
    scheme: str = ""

    @abstractmethod
    async def get(self, location: str, key: Optional[str] = None) -> str:
        """Return the secret value; raise PrerequisiteError when unavailable."""


class EnvSecretProvider(SecretProvider):
    scheme = "env"

    async def get(self, location: str, key: Optional[str] = None) -> str:
        value = os.environ.get(location)
        if not value:
            raise PrerequisiteError(f"Environment variable {location} is not set")
        return value


class AwsSecretsManagerProvider(SecretProvider):
    scheme = "aws-secretsmanager"

    def __init__(self, region: Optional[str] = None, profile: Optional[str] = None):
        self.region = region
        self.profile = profile

    def _client(self):
        session = boto3.Session(
            profile_name=self.profile, region_name=self.region
        )
        return session.client("secretsmanager")

    def _get_secret_value(self, location: str) -> dict:
        return self._client().get_secret_value(SecretId=location)

    async def get(self, location: str, key: Optional[str] = None) -> str:
        try:
            response = await asyncio.to_thread(self._get_secret_value, location)
        except (BotoCoreError, ClientError) as e:
            raise PrerequisiteError(f"Cannot read secret {location}: {e}") from e

        secret = response.get("SecretString")
        if secret is None:
            raise PrerequisiteError(f"Secret {location} has no string value")
        if key is None:
            return secret
        try:
            return str(json.loads(secret)[key])
        except (ValueError, KeyError, TypeError) as e:
            raise PrerequisiteError(
                f"Secret {location} has no JSON field '{key}'"
            ) from e


class KubernetesSecretProvider(SecretProvider):
    scheme = "k8s"

    def __init__(self, core_api: Optional[client.CoreV1Api]):
        self.core_api = core_api

    async def get(self, location: str, key: Optional[str] = None) -> str:
        namespace, sep, name = location.partition("/")
        if not sep or not name or not key:
            raise ConfigError(
                f"Kubernetes secret reference must be k8s:NAMESPACE/NAME#key, got k8s:{location}"
            )
        if self.core_api is None:
            raise PrerequisiteError("Kubernetes access is required to read k8s secrets")
        try:
            secret = await self.core_api.read_namespaced_secret(
                name=name, namespace=namespace
            )
        except exceptions.ApiException as e:
            raise PrerequisiteError(
                f"Cannot read secret {namespace}/{name}: {e.status} {e.reason}"
            ) from e
        data = secret.data or {}
        if key not in data:
            raise PrerequisiteError(f"Secret {namespace}/{name} has no key '{key}'")
        return base64.b64decode(data[key]).decode()


async def resolve_secret(
    reference: str,
    core_api: Optional[client.CoreV1Api] = None,
    region: Optional[str] = None,
    profile: Optional[str] = None,
) -> str:
    scheme, location, key = parse_reference(reference)
    providers = {
        EnvSecretProvider.scheme: lambda: EnvSecretProvider(),
        AwsSecretsManagerProvider.scheme: lambda: AwsSecretsManagerProvider(
            region=region, profile=profile
        ),
        KubernetesSecretProvider.scheme: lambda: KubernetesSecretProvider(core_api),
    }
    factory = providers.get(scheme)
    if factory is None:
        raise ConfigError(
            f"Unsupported secret scheme '{scheme}' (expected one of {', '.join(providers)})"
        )
    logger.debug(f"Resolving secret via {scheme}:{location}")
    return await factory().get(location, key)
