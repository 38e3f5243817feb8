# SPDX-FileCopyrightText: Copyright (c) 2025-2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from reports_loadtest.applier import BulkApplier
from reports_loadtest.cleanup import Cleaner
from reports_loadtest.config import DEFAULT_IMAGE, WAIT_MODES, LoadTestConfig
from reports_loadtest.errors import LoadTestError, VerificationError
from reports_loadtest.kube import API_ERRORS, KubeSession, RunLock, describe_error
from reports_loadtest.monitor import StatusMonitor
from reports_loadtest.naming import identifiers, plan_batches
from reports_loadtest.preflight import Preflight, PreflightReport
from reports_loadtest.reports_db import ReportsDatabase
from reports_loadtest.results import BulkResult
from reports_loadtest.scheduler import BatchScheduler, LoadRunSummary
from reports_loadtest.utils import (
    format_duration,
    print_banner,
    print_status,
    setup_logging,
)
from reports_loadtest.verifier import NAMESPACES, VerificationReport, Verifier

logger = logging.getLogger(__name__)

MAX_LISTED_FAILURES = 10

READY_MODE_IMAGE_NOTE = (
    f"Pods running the default image {DEFAULT_IMAGE} cannot bind port 80 as uid "
    "1000 and never become Ready; pass --image with an image that serves HTTP "
    "on port 80 as a non-root user, or use --wait-mode fixed"
)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reports-loadtest",
        description=(
            "Admission-webhook load testing for Kyverno with the Reports Server "
            "on Kubernetes"
        ),
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    preflight_parser = subparsers.add_parser(
        "preflight", help="Validate cluster, Kyverno, Reports Server and monitoring"
    )
    _add_cluster_args(preflight_parser)

    setup_parser = subparsers.add_parser(
        "setup", help="Create test namespaces and objects, then verify them"
    )
    _add_cluster_args(setup_parser)
    _add_workload_args(setup_parser)
    _add_verify_wait_arg(setup_parser)

    load_parser = subparsers.add_parser(
        "load", help="Scale test deployments up and down in batches"
    )
    _add_cluster_args(load_parser)
    _add_workload_args(load_parser)
    _add_scheduler_args(load_parser)

    verify_parser = subparsers.add_parser(
        "verify", help="Count test objects and compare with expected totals"
    )
    _add_cluster_args(verify_parser)
    _add_workload_args(verify_parser)
    _add_verify_wait_arg(verify_parser)
    verify_parser.add_argument(
        "--expect-empty",
        action="store_true",
        help="Expect no test objects (after cleanup)",
    )

    report_parser = subparsers.add_parser(
        "report", help="Query policy report tables in PostgreSQL"
    )
    _add_cluster_args(report_parser)
    _add_db_args(report_parser)

    cleanup_parser = subparsers.add_parser(
        "cleanup", help="Delete test objects and namespaces"
    )
    _add_cluster_args(cleanup_parser)
    _add_workload_args(cleanup_parser)
    cleanup_parser.add_argument(
        "--keep-namespaces",
        action="store_true",
        help="Delete workloads only and keep the test namespaces",
    )
    cleanup_parser.add_argument(
        "--namespaces-only",
        action="store_true",
        help="Delete namespaces directly and let deletion cascade",
    )
    cleanup_parser.add_argument(
        "--namespace-timeout",
        type=float,
        default=300.0,
        help="Seconds to wait for namespace deletion",
    )
    cleanup_parser.add_argument(
        "--force-unlock",
        action="store_true",
        help="Remove a stale run lock before cleaning up",
    )

    run_parser = subparsers.add_parser(
        "run", help="Preflight + setup + verify + load + report"
    )
    _add_cluster_args(run_parser)
    _add_workload_args(run_parser)
    _add_scheduler_args(run_parser)
    _add_db_args(run_parser)
    _add_verify_wait_arg(run_parser)
    run_parser.add_argument(
        "--skip-preflight", action="store_true", help="Skip infrastructure validation"
    )
    run_parser.add_argument(
        "--skip-report", action="store_true", help="Skip the database report"
    )
    run_parser.add_argument(
        "--cleanup", action="store_true", help="Delete test objects at the end"
    )

    monitor_parser = subparsers.add_parser(
        "monitor", help="Sample component status to a CSV file"
    )
    _add_cluster_args(monitor_parser)
    monitor_parser.add_argument(
        "--rds-instance-id", type=str, default=None, help="RDS instance to sample"
    )
    monitor_parser.add_argument(
        "--interval", type=float, default=30.0, help="Seconds between samples"
    )
    monitor_parser.add_argument(
        "--iterations", type=int, default=None, help="Stop after N samples"
    )
    monitor_parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="CSV file (default: monitoring-<timestamp>.csv)",
    )

    return parser


def _add_cluster_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=str, default=None, help="YAML config file")
    parser.add_argument("--cluster-name", type=str, default=None)
    parser.add_argument("--region", type=str, default=None)
    parser.add_argument("--aws-profile", type=str, default=None)
    parser.add_argument("--kyverno-namespace", type=str, default=None)
    parser.add_argument("--monitoring-namespace", type=str, default=None)
    parser.add_argument(
        "--skip-eks-check",
        dest="check_eks",
        action="store_const",
        const=False,
        default=None,
        help="Do not query the EKS API for cluster status",
    )
    parser.add_argument(
        "--lock-namespace",
        type=str,
        default=None,
        help="Namespace holding the run lock ConfigMap",
    )


def _add_workload_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--prefix", type=str, default=None, help="Namespace prefix")
    parser.add_argument(
        "--count", type=int, default=None, help="Number of test namespaces"
    )
    parser.add_argument(
        "--width", type=int, default=None, help="Zero-padded identifier width"
    )
    parser.add_argument(
        "--start", type=int, default=None, help="First identifier (resume offset)"
    )
    parser.add_argument("--owner", type=str, default=None, help="owner label value")
    parser.add_argument(
        "--image",
        type=str,
        default=None,
        help="Test container image; must serve HTTP on port 80 as uid 1000 "
        "for --wait-mode ready",
    )
    parser.add_argument(
        "--apply-concurrency",
        type=int,
        default=None,
        help="Identifiers applied concurrently",
    )
    parser.add_argument(
        "--api-timeout", type=float, default=None, help="Per API call timeout"
    )


def _add_scheduler_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument(
        "--dwell", type=float, default=None, help="Seconds to wait after scale up"
    )
    parser.add_argument(
        "--cooldown", type=float, default=None, help="Seconds to wait after scale down"
    )
    parser.add_argument(
        "--wait-mode",
        choices=WAIT_MODES,
        default=None,
        help="fixed: sleep the dwell/cooldown; ready: wait for pods to become "
        f"Ready (not with the default image {DEFAULT_IMAGE}, see --image)",
    )
    parser.add_argument(
        "--readiness-timeout",
        type=float,
        default=None,
        help="Readiness poll bound in 'ready' mode",
    )
    parser.add_argument(
        "--max-concurrency", type=int, default=None, help="Concurrent scale calls"
    )


def _add_db_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db-host", type=str, default=None)
    parser.add_argument("--db-port", type=int, default=None)
    parser.add_argument("--db-name", type=str, default=None)
    parser.add_argument("--db-user", type=str, default=None)
    parser.add_argument(
        "--db-password-ref",
        type=str,
        default=None,
        help="env:VAR, aws-secretsmanager:ID[#key] or k8s:NS/NAME#key",
    )
    parser.add_argument("--rds-instance-id", type=str, default=None)
    parser.add_argument(
        "--expect-min-reports",
        type=int,
        default=None,
        help="Fail unless at least this many report rows exist",
    )
    parser.add_argument(
        "--reports-timeout",
        type=float,
        default=300.0,
        help="Seconds to wait for report rows to reach --expect-min-reports",
    )


def _add_verify_wait_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--verify-timeout",
        type=float,
        default=0.0,
        help="Seconds to keep re-checking counts until they converge",
    )


def _load_config(args: argparse.Namespace) -> LoadTestConfig:
    cfg = LoadTestConfig.from_args(args)
    cfg.validate()
    return cfg


def _print_bulk(result: BulkResult) -> None:
    level = "SUCCESS" if result.ok else "WARNING"
    print_status(level, f"{result.operation}: {result.summary()}")
    if len(result.identifiers) != result.total:
        print(f"   {result.identifier_summary()}")
    for failure in result.failures[:MAX_LISTED_FAILURES]:
        print(f"   - {failure.identifier}: {failure.operation}: {failure.error}")
    if result.failed > MAX_LISTED_FAILURES:
        print(f"   ... and {result.failed - MAX_LISTED_FAILURES} more")


def _print_verification(report: VerificationReport, ignore: tuple = ()) -> bool:
    print_status("INFO", "Resource summary:")
    for count in report.counts:
        marker = "" if count.ok or count.kind in ignore else "  <-- mismatch"
        print(f"   - {count}{marker}")
    mismatches = [c for c in report.mismatches if c.kind not in ignore]
    if mismatches:
        print_status(
            "ERROR",
            "Count mismatch: " + ", ".join(str(c) for c in mismatches),
        )
        return False
    print_status("SUCCESS", "All counts match")
    return True


def _print_rows(title: str, rows: List[Dict[str, Any]]) -> None:
    print(f"\n=== {title} ===")
    if not rows:
        print("   (no rows)")
        return
    for row in rows:
        print("   " + ", ".join(f"{k}={v}" for k, v in row.items()))


def _print_preflight(report: PreflightReport) -> None:
    for check in report.checks:
        print_status("SUCCESS" if check.ok else "ERROR", f"{check.name}: {check.detail}")


def _print_load_summary(summary: LoadRunSummary, cfg: LoadTestConfig) -> None:
    s = cfg.scheduler
    print_banner("LOAD TESTING COMPLETED")
    print(f"Total batches processed: {summary.batches}")
    print(f"Total admission webhook events: {summary.scale_operations}")
    print(f"Scale up: {summary.scale_up.summary()}")
    print(f"Scale down: {summary.scale_down.summary()}")
    print(f"Test duration: {format_duration(summary.duration_seconds)}")
    print(f"Time spent in dwell/cooldown: {format_duration(summary.slept_seconds)}")
    print(f"Peak running pods observed: {summary.max_running_pods}")
    print(
        f"Cycle: scale up -> wait {s.dwell_seconds:.0f}s -> scale down -> "
        f"wait {s.cooldown_seconds:.0f}s ({s.wait_mode} mode)"
    )
    if summary.readiness_timeouts:
        print_status(
            "WARNING",
            f"Readiness timed out in batches {summary.readiness_timeouts}",
        )
    for result in (summary.scale_up, summary.scale_down):
        if not result.ok:
            _print_bulk(result)


async def _setup(
    kube: KubeSession, cfg: LoadTestConfig, verify_timeout: float
) -> bool:
    w = cfg.workload
    ids = identifiers(w.total_namespaces, width=w.identifier_width, start=w.start_index)
    print(f"\nCreating objects for {len(ids)} namespaces ({ids[0]}..{ids[-1]})...")

    applier = BulkApplier(kube.core, kube.apps, w)
    result = await applier.apply_all(ids)
    _print_bulk(result)

    verifier = Verifier(kube.core, kube.apps, w)
    report = await verifier.verify(wait_timeout=verify_timeout)
    counts_ok = _print_verification(report)
    return result.ok and counts_ok


async def _load(kube: KubeSession, cfg: LoadTestConfig) -> LoadRunSummary:
    w, s = cfg.workload, cfg.scheduler
    batches = plan_batches(
        w.total_namespaces, s.batch_size, width=w.identifier_width, start=w.start_index
    )
    print(
        f"\nStarting controlled load testing with {len(batches)} batches "
        f"of up to {s.batch_size} namespaces..."
    )
    if s.wait_mode == "ready" and w.image == DEFAULT_IMAGE:
        print_status("WARNING", READY_MODE_IMAGE_NOTE)
    scheduler = BatchScheduler(kube.core, kube.apps, w, s)
    summary = await scheduler.run(batches)
    _print_load_summary(summary, cfg)
    return summary


async def _report(
    cfg: LoadTestConfig,
    kube: Optional[KubeSession],
    expect_min: Optional[int],
    reports_timeout: float,
) -> bool:
    database = await ReportsDatabase.from_config(
        cfg, core_api=kube.core if kube else None
    )
    async with database:
        info = await database.connection_info()
        _print_rows("Connection", [info])
        print(f"\n=== Tables ===\n   {', '.join(await database.list_tables())}")

        if expect_min is not None:
            reconciliation = await database.reconcile(expect_min, reports_timeout)
            counts = reconciliation.counts
        else:
            reconciliation = None
            counts = await database.table_counts()

        _print_rows(
            "Report table counts",
            [
                {"table": t, "count": "missing" if c is None else c}
                for t, c in counts.counts.items()
            ],
        )
        print(f"   Total records: {counts.total}")

        _print_rows("Reports by namespace", await database.reports_by_namespace())
        _print_rows("Recent reports", await database.recent_reports())
        _print_rows("Failed reports", await database.failed_reports())
        _print_rows("Policy results summary", await database.policy_results_summary())

    if reconciliation is None:
        return True
    print_status("SUCCESS" if reconciliation.converged else "ERROR", str(reconciliation))
    return reconciliation.converged


async def cmd_preflight_async(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    async with KubeSession() as kube:
        report = await Preflight(kube.core, cfg.cluster).run()
    _print_preflight(report)
    return 0 if report.ok else 1


async def cmd_setup_async(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    async with KubeSession() as kube:
        async with RunLock(kube.core, cfg.lock_namespace, command="setup"):
            ok = await _setup(kube, cfg, args.verify_timeout)
    return 0 if ok else 1


async def cmd_load_async(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    async with KubeSession() as kube:
        async with RunLock(kube.core, cfg.lock_namespace, command="load"):
            summary = await _load(kube, cfg)
    return 0 if summary.ok else 1


async def cmd_verify_async(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    async with KubeSession() as kube:
        verifier = Verifier(kube.core, kube.apps, cfg.workload)
        report = await verifier.verify(
            expect_empty=args.expect_empty, wait_timeout=args.verify_timeout
        )
    return 0 if _print_verification(report) else 1


async def cmd_report_async(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    if cfg.database.password_ref.startswith("k8s:"):
        async with KubeSession() as kube:
            ok = await _report(cfg, kube, args.expect_min_reports, args.reports_timeout)
    else:
        ok = await _report(cfg, None, args.expect_min_reports, args.reports_timeout)
    return 0 if ok else 1


async def cmd_cleanup_async(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    w = cfg.workload
    async with KubeSession() as kube:
        lock = RunLock(kube.core, cfg.lock_namespace, command="cleanup")
        if args.force_unlock:
            await lock.release(force=True)

        async with lock:
            cleaner = Cleaner(
                kube.core, kube.apps, w, namespace_timeout=args.namespace_timeout
            )
            ids = set(
                identifiers(
                    w.total_namespaces, width=w.identifier_width, start=w.start_index
                )
            )
            ids.update(await cleaner.discover_identifiers())
            print(f"\nCleaning up {len(ids)} test namespaces...")

            summary = await cleaner.cleanup(
                sorted(ids),
                delete_namespaces=not args.keep_namespaces,
                workloads_first=not args.namespaces_only,
            )
            _print_bulk(summary.deleted)
            if summary.remaining_namespaces:
                print_status(
                    "WARNING",
                    f"Namespaces still present: {', '.join(summary.remaining_namespaces)}",
                )

            verifier = Verifier(kube.core, kube.apps, w)
            report = await verifier.verify(expect_empty=True)

    ignore = (NAMESPACES,) if args.keep_namespaces else ()
    counts_ok = _print_verification(report, ignore=ignore)
    return 0 if counts_ok and summary.deleted.ok else 1


async def _cleanup_after_run(kube: KubeSession, cfg: LoadTestConfig) -> bool:
    w = cfg.workload
    cleanup = await Cleaner(kube.core, kube.apps, w).cleanup(
        identifiers(w.total_namespaces, width=w.identifier_width, start=w.start_index)
    )
    _print_bulk(cleanup.deleted)
    return cleanup.deleted.ok and cleanup.namespaces_gone


async def cmd_run_async(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    if not args.skip_report:
        cfg.validate_database()

    async with KubeSession() as kube:
        if not args.skip_preflight:
            print_banner("STEP 1: INFRASTRUCTURE VALIDATION")
            report = await Preflight(kube.core, cfg.cluster).run()
            _print_preflight(report)
            if not report.ok:
                return 1

        async with RunLock(kube.core, cfg.lock_namespace, command="run"):
            cleanup_ok = True
            try:
                print_banner("STEP 2: OBJECT DEPLOYMENT")
                if not await _setup(kube, cfg, args.verify_timeout):
                    raise VerificationError("Resource creation incomplete")

                print_banner("STEP 3: LOAD TESTING EXECUTION")
                summary = await _load(kube, cfg)

                print_banner("STEP 4: SYSTEM PERFORMANCE CHECK")
                restarts = await Preflight(kube.core, cfg.cluster).kyverno_restarts()
                if restarts:
                    print_status("WARNING", f"Kyverno stability: {restarts} pod restarts")
                else:
                    print_status("SUCCESS", "Kyverno stability: no pod restarts")

                reports_ok = True
                if not args.skip_report:
                    print_banner("STEP 5: POLICY REPORT VERIFICATION")
                    reports_ok = await _report(
                        cfg, kube, args.expect_min_reports, args.reports_timeout
                    )
            finally:
                if args.cleanup:
                    print_banner("STEP 6: CLEANUP")
                    cleanup_ok = await _cleanup_after_run(kube, cfg)

    ok = summary.ok and reports_ok and cleanup_ok
    print_status("SUCCESS" if ok else "WARNING", "Run finished")
    return 0 if ok else 1


async def cmd_monitor_async(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    output = args.output or f"monitoring-{datetime.now().strftime('%Y%m%d-%H%M%S')}.csv"
    print(f"Monitoring log file: {output} (Ctrl+C to stop)")
    async with KubeSession() as kube:
        monitor = StatusMonitor(
            kube.core,
            kube.custom,
            cfg.cluster,
            rds_instance_id=cfg.database.rds_instance_id,
        )
        try:
            await monitor.run(output, interval=args.interval, iterations=args.iterations)
        except asyncio.CancelledError:
            print("\nMonitoring stopped")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        return 1

    handlers = {
        "preflight": cmd_preflight_async,
        "setup": cmd_setup_async,
        "load": cmd_load_async,
        "verify": cmd_verify_async,
        "report": cmd_report_async,
        "cleanup": cmd_cleanup_async,
        "run": cmd_run_async,
        "monitor": cmd_monitor_async,
    }

    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return asyncio.run(handler(args))
    except LoadTestError as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        print_status("ERROR", str(e))
        return e.exit_code
    except API_ERRORS as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        print_status("ERROR", f"Kubernetes API call failed: {describe_error(e)}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
