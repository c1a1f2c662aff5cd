from __future__ import annotations

from datetime import datetime, timezone
import logging
from pathlib import Path
import sqlite3
from typing import Any, Callable, TypeVar

from odf_storage_audit.ceph import CephCommandError, CephToolbox, ToolboxUnavailableError, find_tools_pod
from odf_storage_audit.classify import build_orphan_report
from odf_storage_audit.config import AuditConfig, ConfigError, ensure_directories, resolve_output_dir
from odf_storage_audit.history import AuditHistoryStore, orphan_sightings, reconcile
from odf_storage_audit.inventory import (
    BindingUnavailableError,
    build_binding_map,
    build_block_images,
    build_buckets,
    build_filesystem_usage,
    build_pool_usage,
    build_subvolumes,
    collect_capacity_trend,
    collect_cluster_status,
)
from odf_storage_audit.k8s import (
    KubernetesAuthenticationError,
    KubernetesClients,
    KubernetesDiscoveryError,
    load_kubernetes_clients,
)
from odf_storage_audit.metrics import (
    MetricsAuthenticationError,
    MetricsClient,
    MetricsDiscoveryError,
    MetricsQueryError,
)
from odf_storage_audit.models import BuilderFailure
from odf_storage_audit.report import assemble_report, write_artifacts

logger = logging.getLogger(__name__)

T = TypeVar("T")

FATAL_ERRORS = (
    ConfigError,
    KubernetesAuthenticationError,
    KubernetesDiscoveryError,
    ToolboxUnavailableError,
    MetricsDiscoveryError,
    MetricsAuthenticationError,
    MetricsQueryError,
)
BUILDER_ERRORS = (CephCommandError, KubernetesDiscoveryError, BindingUnavailableError)


class AuditFatalError(RuntimeError):
    """Raised when the audit cannot produce a trustworthy report."""


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc).replace(microsecond=0)


def run_audit(
    config: AuditConfig,
    *,
    clients: KubernetesClients,
    toolbox: CephToolbox,
    metrics: MetricsClient,
    history: AuditHistoryStore | None,
    output_dir: Path,
    now: datetime,
) -> dict[str, Any]:
    """Collect every inventory, classify it and return the report mapping.

    Fatal conditions raise :class:`AuditFatalError`. A failing builder only
    costs its own dataset: the failure is listed under ``failures`` and the
    dataset is empty.
    """
    failures: list[BuilderFailure] = []
    try:
        logger.info("Step 1/7: listing Kubernetes storage bindings")
        binding_map, counts, claims = build_binding_map(clients, config)

        logger.info("Step 2/7: collecting cluster status")
        cluster = collect_cluster_status(toolbox, metrics)
        total = cluster.capacity.raw_total_bytes

        logger.info("Step 3/7: collecting pool usage")
        pools = _guarded(failures, "pools", lambda: build_pool_usage(toolbox, metrics, total))

        logger.info("Step 4/7: collecting RBD images")
        images = _guarded(failures, "rbd", lambda: build_block_images(toolbox, binding_map))

        logger.info("Step 5/7: collecting CephFS subvolumes")
        subvolumes = _guarded(failures, "cephfs", lambda: build_subvolumes(toolbox))
        filesystems = build_filesystem_usage(toolbox, metrics)

        logger.info("Step 6/7: collecting RGW buckets")
        buckets = _guarded(failures, "rgw", lambda: build_buckets(toolbox, binding_map, total))

        logger.info("Step 7/7: collecting capacity trend")
        trend = collect_capacity_trend(metrics, window_hours=config.trend_window_hours, now=now)
        endpoint = metrics.endpoint
    except FATAL_ERRORS as error:
        raise AuditFatalError(str(error)) from error

    orphans = build_orphan_report(images, buckets, pools)
    generated_at = now.isoformat()
    reconciliation = _reconcile_history(
        history, orphans, now=now, generated_at=generated_at, config=config, failures=failures
    )

    report = assemble_report(
        generated_at=generated_at,
        output_dir=output_dir,
        data_sources={
            "prometheus": endpoint.url,
            "prometheus_source": endpoint.source,
            "kubernetes": "kubernetes-api",
            "ceph_direct": "rook-ceph-tools",
            "tools_pod": toolbox.pod_name,
            "storage_namespace": config.storage_namespace,
        },
        cluster=cluster,
        counts=counts,
        images=images,
        buckets=buckets,
        subvolumes=subvolumes,
        filesystems=filesystems,
        claims=claims,
        pools=pools,
        orphans=orphans,
        failures=failures,
        trend=trend,
        reconciliation=reconciliation,
        bucket_bindings=len(binding_map.claim_buckets | binding_map.secret_buckets),
    )
    logger.info(
        "Audit complete: %s RBD and %s RGW high-confidence orphans, %s incomplete sections",
        orphans["summary"]["rbd_high_confidence"],
        orphans["summary"]["rgw_high_confidence"],
        len(failures),
    )
    return report


def _guarded(failures: list[BuilderFailure], builder: str, func: Callable[[], list[T]]) -> list[T]:
    try:
        return func()
    except BUILDER_ERRORS as error:
        logger.warning("Builder '%s' failed, continuing without it: %s", builder, error)
        failures.append(BuilderFailure(builder=builder, error=str(error)))
        return []


def _reconcile_history(
    history: AuditHistoryStore | None,
    orphans: dict[str, Any],
    *,
    now: datetime,
    generated_at: str,
    config: AuditConfig,
    failures: list[BuilderFailure],
) -> dict[str, Any]:
    if history is None:
        return {}

    sightings = orphan_sightings(orphans)
    try:
        history.initialize()
        first_seen = history.first_seen_map()
        history.record_run(seen_at=generated_at, sightings=sightings)
        runs_recorded = history.count_runs()
    except sqlite3.Error as error:
        logger.warning("Audit history unavailable at %s: %s", history.db_path, error)
        failures.append(BuilderFailure(builder="history", error=str(error)))
        return {}

    try:
        reconciliation = reconcile(sightings, first_seen, now=now, min_age_days=config.reconcile_days)
    except (ValueError, TypeError) as error:
        logger.warning("Audit history at %s holds an unusable timestamp: %s", history.db_path, error)
        failures.append(BuilderFailure(builder="history", error=f"unusable timestamp in {history.db_path}: {error}"))
        return {}
    reconciliation["runs_recorded"] = runs_recorded
    return reconciliation


def execute_audit(
    config: AuditConfig,
    *,
    kubeconfig_path: str | None = None,
    context: str | None = None,
    in_cluster: bool = False,
    now: datetime | None = None,
) -> tuple[dict[str, Any], Path]:
    """Wire up live clients, run the audit and write every artifact."""
    now = now or utc_now()
    output_dir = resolve_output_dir(config, now)
    try:
        ensure_directories(config, output_dir)
        clients = load_kubernetes_clients(kubeconfig_path=kubeconfig_path, context=context, in_cluster=in_cluster)
        pod_name = find_tools_pod(
            clients.core_api,
            namespace=config.storage_namespace,
            label_selector=config.tools_pod_selector,
        )
    except FATAL_ERRORS as error:
        raise AuditFatalError(str(error)) from error
    except OSError as error:
        raise AuditFatalError(f"Unable to create output directory {output_dir}: {error}") from error

    logger.info("Using rook-ceph-tools pod %s/%s", config.storage_namespace, pod_name)
    toolbox = CephToolbox(core_api=clients.core_api, namespace=config.storage_namespace, pod_name=pod_name)
    metrics = MetricsClient(config=config, clients=clients)
    history = AuditHistoryStore(config.history_db_path)

    report = run_audit(
        config,
        clients=clients,
        toolbox=toolbox,
        metrics=metrics,
        history=history,
        output_dir=output_dir,
        now=now,
    )
    write_artifacts(report, output_dir)
    return report, output_dir
