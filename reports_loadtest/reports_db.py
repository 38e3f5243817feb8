# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Read-only queries against the Reports Server PostgreSQL database.

The schema belongs to the Reports Server; this module only counts and
summarizes the policy report rows it has persisted.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from kubernetes_asyncio import client
from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from reports_loadtest.config import LoadTestConfig
from reports_loadtest.errors import InfrastructureNotReady, PrerequisiteError
from reports_loadtest.polling import SleepFn, poll_until
from reports_loadtest.secret_store import resolve_secret

logger = logging.getLogger(__name__)

REPORT_TABLES = (
    "policyreports",
    "clusterpolicyreports",
    "ephemeralreports",
    "clusterephemeralreports",
)

_CONNECTION_INFO = text(
    "SELECT current_database() AS database, current_user AS db_user, "
    "version() AS server_version, now() AS server_time"
)

_LIST_TABLES = text(
    "SELECT table_name FROM information_schema.tables "
    "WHERE table_schema = current_schema() ORDER BY table_name"
)

_REPORTS_BY_NAMESPACE = text(
    "SELECT namespace, COUNT(*) AS report_count FROM policyreports "
    "GROUP BY namespace ORDER BY report_count DESC, namespace"
)

_RECENT_REPORTS = text(
    "SELECT name, namespace, report->'summary' AS summary FROM policyreports "
    "ORDER BY name DESC LIMIT :limit"
)

_FAILED_REPORTS = text(
    "SELECT name, namespace, report->'summary' AS summary, "
    "report->'scope'->>'kind' AS resource_kind, "
    "report->'scope'->>'name' AS resource_name "
    "FROM policyreports "
    "WHERE COALESCE((report->'summary'->>'fail')::int, 0) > 0 "
    "ORDER BY name DESC LIMIT :limit"
)

_RESULTS_SUMMARY = text(
    "SELECT namespace, "
    "SUM(COALESCE((report->'summary'->>'pass')::int, 0)) AS total_pass, "
    "SUM(COALESCE((report->'summary'->>'fail')::int, 0)) AS total_fail, "
    "SUM(COALESCE((report->'summary'->>'skip')::int, 0)) AS total_skip, "
    "SUM(COALESCE((report->'summary'->>'warn')::int, 0)) AS total_warn, "
    "SUM(COALESCE((report->'summary'->>'error')::int, 0)) AS total_error "
    "FROM policyreports GROUP BY namespace "
    "ORDER BY total_fail DESC, total_pass DESC, namespace"
)


@dataclass
class TableCounts:
    """Row counts per report table; None marks a table that does not exist."""

    counts: Dict[str, Optional[int]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(c for c in self.counts.values() if c is not None)

    @property
    def missing(self) -> List[str]:
        return [t for t, c in self.counts.items() if c is None]


@dataclass
class Reconciliation:
    expected_min: int
    counts: TableCounts
    converged: bool

    def __str__(self) -> str:
        state = "reached" if self.converged else "NOT reached"
        return (
            f"Policy report rows: {self.counts.total} "
            f"(expected at least {self.expected_min}, {state})"
        )


def discover_rds_endpoint(
    instance_id: str, region: Optional[str] = None, profile: Optional[str] = None
) -> str:
    """Look up the endpoint address of an RDS instance."""
    session = boto3.Session(profile_name=profile, region_name=region)
    try:
        response = session.client("rds").describe_db_instances(
            DBInstanceIdentifier=instance_id
        )
    except (BotoCoreError, ClientError) as e:
        raise PrerequisiteError(f"Cannot describe RDS instance {instance_id}: {e}") from e

    instances = response.get("DBInstances", [])
    address = instances[0].get("Endpoint", {}).get("Address") if instances else None
    if not address:
        raise PrerequisiteError(f"RDS instance {instance_id} has no endpoint yet")
    return address


class ReportsDatabase:
    """Queries over the Reports Server tables."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    @staticmethod
    def build_url(
        host: str, port: int, database: str, user: str, password: str
    ) -> URL:
        return URL.create(
            "postgresql+asyncpg",
            username=user,
            password=password,
            host=host,
            port=port,
            database=database,
        )

    @classmethod
    async def from_config(
        cls, cfg: LoadTestConfig, core_api: Optional[client.CoreV1Api] = None
    ) -> "ReportsDatabase":
        """
        Resolve host and password, then create the engine.

        Args:
            cfg: Validated configuration
            core_api: Needed only for k8s: secret references
        """
        cfg.validate_database()
        db = cfg.database
        host = db.host
        if not host:
            host = await asyncio.to_thread(
                discover_rds_endpoint,
                db.rds_instance_id,
                cfg.cluster.region,
                cfg.cluster.aws_profile,
            )
            logger.info(f"Discovered RDS endpoint {host}")

        password = await resolve_secret(
            db.password_ref,
            core_api=core_api,
            region=cfg.cluster.region,
            profile=cfg.cluster.aws_profile,
        )
        url = cls.build_url(host, db.port, db.name, db.user, password)
        engine = create_async_engine(
            url,
            pool_pre_ping=True,
            connect_args={"timeout": db.connect_timeout},
        )
        return cls(engine)

    async def close(self) -> None:
        await self.engine.dispose()

    async def __aenter__(self) -> "ReportsDatabase":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def _fetch(self, statement, **params: Any) -> List[Dict[str, Any]]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(statement, params)
                return [dict(row._mapping) for row in result]
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            raise PrerequisiteError(f"Reports database query failed: {e}") from e

    async def connection_info(self) -> Dict[str, Any]:
        rows = await self._fetch(_CONNECTION_INFO)
        return rows[0]

    async def list_tables(self) -> List[str]:
        return [row["table_name"] for row in await self._fetch(_LIST_TABLES)]

    async def table_counts(self) -> TableCounts:
        existing = set(await self.list_tables())
        counts: Dict[str, Optional[int]] = {}
        for table in REPORT_TABLES:
            if table not in existing:
                logger.warning(f"Report table {table} does not exist")
                counts[table] = None
                continue
            # Table names come from REPORT_TABLES, never from input.
            rows = await self._fetch(text(f"SELECT COUNT(*) AS count FROM {table}"))
            counts[table] = int(rows[0]["count"])
        return TableCounts(counts)

    async def reports_by_namespace(self) -> List[Dict[str, Any]]:
        return await self._fetch(_REPORTS_BY_NAMESPACE)

    async def recent_reports(self, limit: int = 5) -> List[Dict[str, Any]]:
        return await self._fetch(_RECENT_REPORTS, limit=limit)

    async def failed_reports(self, limit: int = 10) -> List[Dict[str, Any]]:
        return await self._fetch(_FAILED_REPORTS, limit=limit)

    async def policy_results_summary(self) -> List[Dict[str, Any]]:
        return await self._fetch(_RESULTS_SUMMARY)

    async def reconcile(
        self,
        expected_min: int,
        timeout: float = 0.0,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> Reconciliation:
        """
        Wait until the report tables hold at least ``expected_min`` rows.

        Reports lag the objects that triggered them, so the count is
        re-checked with backoff for up to ``timeout`` seconds.
        """
        counts = await self.table_counts()
        if counts.total >= expected_min or timeout <= 0:
            return Reconciliation(expected_min, counts, counts.total >= expected_min)

        async def _reached() -> bool:
            nonlocal counts
            try:
                counts = await self.table_counts()
            except PrerequisiteError as e:
                logger.debug(str(e))
                return False
            return counts.total >= expected_min

        try:
            await poll_until(
                _reached,
                timeout=timeout,
                description=f"{expected_min} policy report rows",
                initial_interval=5.0,
                sleep=sleep,
                clock=clock,
            )
        except InfrastructureNotReady as e:
            logger.warning(str(e))
        return Reconciliation(expected_min, counts, counts.total >= expected_min)
