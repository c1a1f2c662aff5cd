from __future__ import annotations

import base64
import binascii
from datetime import datetime, timedelta
import logging
from typing import Any, Iterable

from odf_storage_audit.ceph import CephCommandError, CephToolbox
from odf_storage_audit.config import AuditConfig
from odf_storage_audit.k8s import (
    KubernetesClients,
    KubernetesDiscoveryError,
    list_object_bucket_claims,
    list_object_buckets,
    list_persistent_volume_claims,
    list_persistent_volumes,
    list_provisioner_secrets,
)
from odf_storage_audit.metrics import MetricsClient, TimeSeriesResult, extract_scalar
from odf_storage_audit.models import (
    BindingMap,
    BlockImageRecord,
    BucketRecord,
    ClaimRecord,
    ClusterCapacity,
    ClusterStatus,
    FilesystemUsage,
    KubernetesCounts,
    PoolUsageEntry,
    SubvolumeRecord,
)
from odf_storage_audit.normalize import (
    is_block_pool_name,
    is_logging_bucket_name,
    is_loki_bucket_name,
    is_suspected_test_pool_name,
    is_test_pattern_name,
    normalize_bytes,
    parse_quantity,
    parse_volume_handle,
    to_int,
)

logger = logging.getLogger(__name__)

TREND_STEP = "1h"


class BindingUnavailableError(RuntimeError):
    """Raised when bucket bindings could not be listed, so no bucket can be judged."""


def build_binding_map(
    clients: KubernetesClients,
    config: AuditConfig,
) -> tuple[BindingMap, KubernetesCounts, list[ClaimRecord]]:
    pvs = list_persistent_volumes(clients)
    pvcs = list_persistent_volume_claims(clients)

    handles: list[str] = []
    image_refs: set[str] = set()
    subvolume_refs: set[str] = set()
    rbd_pvs = 0
    cephfs_pvs = 0
    for pv in pvs:
        csi = pv.spec.csi if pv.spec else None
        if csi is None:
            continue
        attributes = csi.volume_attributes or {}
        if csi.driver == config.rbd_driver:
            rbd_pvs += 1
            handle = (csi.volume_handle or "").strip()
            if handle:
                handles.append(handle)
                image_refs.add(parse_volume_handle(handle))
            if attributes.get("pool") and attributes.get("imageName"):
                image_refs.add(f"{attributes['pool']}/{attributes['imageName']}")
        elif csi.driver == config.cephfs_driver:
            cephfs_pvs += 1
            if attributes.get("subvolumeName"):
                subvolume_refs.add(attributes["subvolumeName"])

    bucket_source_error: str | None = None
    obcs: list[dict[str, Any]] = []
    obs: list[dict[str, Any]] = []
    claim_buckets: set[str] = set()
    secret_buckets: set[str] = set()
    try:
        obcs = list_object_bucket_claims(clients)
        obs = list_object_buckets(clients)
        secrets = list_provisioner_secrets(clients, config.bucket_provisioner_label)
    except KubernetesDiscoveryError as error:
        bucket_source_error = str(error)
        logger.warning("Bucket binding sources unavailable: %s", error)
    else:
        claim_buckets = {name for name in (_claim_bucket_name(obc) for obc in obcs) if name}
        secret_buckets = {name for name in (_secret_bucket_name(secret) for secret in secrets) if name}

    binding_map = BindingMap(
        volume_handles=tuple(sorted(set(handles))),
        image_refs=frozenset(image_refs),
        subvolume_refs=frozenset(subvolume_refs),
        claim_buckets=frozenset(claim_buckets),
        secret_buckets=frozenset(secret_buckets),
        bucket_source_error=bucket_source_error,
    )
    counts = KubernetesCounts(
        pv_total=len(pvs),
        pvc_total=len(pvcs),
        obc_total=len(obcs),
        ob_total=len(obs),
        rbd_pvs=rbd_pvs,
        cephfs_pvs=cephfs_pvs,
    )
    logger.info(
        "Kubernetes inventory: %s PVs (%s RBD, %s CephFS), %s PVCs, %s OBCs, %s bucket references",
        counts.pv_total,
        counts.rbd_pvs,
        counts.cephfs_pvs,
        counts.pvc_total,
        counts.obc_total,
        len(claim_buckets | secret_buckets),
    )
    return binding_map, counts, build_claim_records(pvcs)


def build_claim_records(pvcs: Iterable[Any]) -> list[ClaimRecord]:
    records: list[ClaimRecord] = []
    for pvc in pvcs:
        resources = pvc.spec.resources if pvc.spec else None
        requested = ((resources.requests if resources else None) or {}).get("storage")
        if not requested:
            continue
        records.append(
            ClaimRecord(
                namespace=pvc.metadata.namespace or "",
                name=pvc.metadata.name or "",
                requested=str(requested),
                requested_bytes=parse_quantity(requested),
                volume_name=pvc.spec.volume_name or "pending",
            )
        )
    records.sort(key=lambda record: record.key)
    return records


def image_has_binding(binding_map: BindingMap, *, pool: str, image: str) -> bool:
    if f"{pool}/{image}" in binding_map.image_refs:
        return True
    return any(image in handle for handle in binding_map.volume_handles)


def build_block_images(toolbox: CephToolbox, binding_map: BindingMap) -> list[BlockImageRecord]:
    pools = _block_pools(toolbox)
    if not pools:
        logger.info("No RBD pools detected")
        return []

    records: list[BlockImageRecord] = []
    for pool in pools:
        try:
            images = toolbox.rbd_list(pool)
        except CephCommandError as error:
            logger.warning("Skipping pool %s: %s", pool, error)
            continue
        for image in sorted(set(images)):
            records.append(_block_image_record(toolbox, binding_map, pool=pool, image=image))

    logger.info("Collected %s RBD images across %s pools", len(records), len(pools))
    return records


def _block_pools(toolbox: CephToolbox) -> list[str]:
    try:
        names = toolbox.pool_names()
    except CephCommandError as error:
        logger.warning("Pool listing failed, treating as no pools: %s", error)
        return []
    return sorted({name for name in names if is_block_pool_name(name)})


def _block_image_record(
    toolbox: CephToolbox,
    binding_map: BindingMap,
    *,
    pool: str,
    image: str,
) -> BlockImageRecord:
    size_bytes = 0
    try:
        size_bytes = to_int(toolbox.rbd_info(pool, image).get("size"))
    except CephCommandError as error:
        logger.warning("rbd info failed for %s/%s: %s", pool, image, error)

    watchers: tuple[str, ...] = ()
    watchers_known = False
    try:
        raw_watchers = toolbox.rbd_status(pool, image).get("watchers") or []
        watchers = tuple(sorted(_watcher_label(item) for item in raw_watchers))
        watchers_known = True
    except CephCommandError as error:
        logger.warning("rbd status failed for %s/%s: %s", pool, image, error)

    return BlockImageRecord(
        pool=pool,
        image=image,
        size_bytes=size_bytes,
        watcher_count=len(watchers),
        watchers=watchers,
        watchers_known=watchers_known,
        has_binding=image_has_binding(binding_map, pool=pool, image=image),
        looks_like_test_artifact=is_test_pattern_name(image),
    )


def _watcher_label(watcher: Any) -> str:
    if isinstance(watcher, dict):
        return str(watcher.get("address") or watcher.get("client") or watcher)
    return str(watcher)


def build_buckets(
    toolbox: CephToolbox,
    binding_map: BindingMap,
    cluster_total_bytes: int,
) -> list[BucketRecord]:
    if binding_map.bucket_source_error:
        raise BindingUnavailableError(
            f"bucket bindings unavailable, buckets not classified: {binding_map.bucket_source_error}"
        )

    try:
        names = toolbox.bucket_list()
    except CephCommandError as error:
        logger.info("No RGW buckets detected (object storage may be disabled): %s", error)
        return []

    records = [
        _bucket_record(toolbox, binding_map, name=name, cluster_total_bytes=cluster_total_bytes)
        for name in sorted(set(names))
    ]
    logger.info("Collected %s RGW buckets", len(records))
    return records


def _bucket_record(
    toolbox: CephToolbox,
    binding_map: BindingMap,
    *,
    name: str,
    cluster_total_bytes: int,
) -> BucketRecord:
    stats: dict[str, Any] = {}
    stats_known = False
    try:
        stats = toolbox.bucket_stats(name)
        stats_known = True
    except CephCommandError as error:
        logger.warning("bucket stats failed for %s: %s", name, error)

    usage = (stats.get("usage") or {}).get("rgw.main") or {}
    return BucketRecord(
        name=name,
        owner=str(stats.get("owner") or "unknown"),
        size_bytes=normalize_bytes(usage.get("size_kb_actual"), "size_kb_actual", cluster_total_bytes),
        objects=to_int(usage.get("num_objects")),
        stats_known=stats_known,
        has_claim_binding=name in binding_map.claim_buckets,
        has_secret_binding=name in binding_map.secret_buckets,
        loki=is_loki_bucket_name(name),
        logging=is_logging_bucket_name(name),
    )


def build_subvolumes(toolbox: CephToolbox) -> list[SubvolumeRecord]:
    try:
        filesystems = sorted({str(item.get("name")) for item in toolbox.fs_list() if item.get("name")})
    except CephCommandError as error:
        logger.info("No CephFS filesystems detected: %s", error)
        return []

    records: list[SubvolumeRecord] = []
    for filesystem in filesystems:
        for group in _names(_safe_call(toolbox.subvolume_groups, filesystem)):
            for name in _names(_safe_call(toolbox.subvolumes, filesystem, group)):
                info = _safe_call(toolbox.subvolume_info, filesystem, name, group, default={})
                records.append(
                    SubvolumeRecord(
                        filesystem=filesystem,
                        group=group,
                        name=name,
                        bytes_quota=to_int(info.get("bytes_quota")),
                    )
                )
    logger.info("Collected %s CephFS subvolumes across %s filesystems", len(records), len(filesystems))
    return records


def build_filesystem_usage(toolbox: CephToolbox, metrics: MetricsClient) -> list[FilesystemUsage]:
    """Recursive byte and file totals of each filesystem root, as exported by the MDS."""
    try:
        filesystems = sorted({str(item.get("name")) for item in toolbox.fs_list() if item.get("name")})
    except CephCommandError as error:
        logger.info("No CephFS filesystems detected: %s", error)
        return []
    if not filesystems:
        return []

    rbytes = metrics.query_instant("ceph_mds_root_rbytes")
    rfiles = metrics.query_instant("ceph_mds_root_rfiles")
    return [
        FilesystemUsage(
            name=filesystem,
            total_bytes=to_int(_filesystem_sample(rbytes, filesystem)),
            total_files=to_int(_filesystem_sample(rfiles, filesystem)),
        )
        for filesystem in filesystems
    ]


def _filesystem_sample(result: TimeSeriesResult, filesystem: str) -> float:
    for sample in result.samples:
        labels = sample.labels
        if labels.get("fs_id") == filesystem or filesystem in labels.get("ceph_daemon", ""):
            return sample.value or 0.0
    return 0.0


def _names(items: Iterable[dict[str, Any]]) -> list[str]:
    return sorted({str(item["name"]) for item in items if item.get("name")})


def _safe_call(func: Any, *args: str, default: Any = None) -> Any:
    try:
        return func(*args)
    except CephCommandError as error:
        logger.warning("%s", error)
        return [] if default is None else default


def collect_cluster_status(toolbox: CephToolbox, metrics: MetricsClient) -> ClusterStatus:
    capacity = ClusterCapacity(
        raw_total_bytes=int(extract_scalar(metrics.query_instant("sum(ceph_osd_stat_bytes)"))),
        raw_used_bytes=int(extract_scalar(metrics.query_instant("sum(ceph_pool_bytes_used)"))),
        stored_bytes=int(extract_scalar(metrics.query_instant("sum(ceph_pool_stored)"))),
    )

    status: dict[str, Any] = {}
    try:
        status = toolbox.status()
    except CephCommandError as error:
        logger.warning("ceph status failed, health reported as unknown: %s", error)

    osdmap = status.get("osdmap") or {}
    # Newer releases nest the counters one level deeper.
    osds = osdmap.get("num_osds", (osdmap.get("osdmap") or {}).get("num_osds"))
    return ClusterStatus(
        health=str((status.get("health") or {}).get("status") or "unknown"),
        osds=to_int(osds),
        mons=len((status.get("monmap") or {}).get("mons") or []),
        capacity=capacity,
    )


def build_pool_usage(
    toolbox: CephToolbox,
    metrics: MetricsClient,
    cluster_total_bytes: int,
) -> list[PoolUsageEntry]:
    entries = _pool_usage_from_metrics(metrics, cluster_total_bytes)
    if not entries:
        entries = _pool_usage_from_df(toolbox, cluster_total_bytes)
    return sorted(entries, key=lambda entry: (-entry.used_bytes, entry.name))


def _pool_usage_from_metrics(metrics: MetricsClient, cluster_total_bytes: int) -> list[PoolUsageEntry]:
    metadata = metrics.query_instant("ceph_pool_metadata")
    names = {
        sample.labels.get("pool_id", ""): sample.labels.get("name") or sample.labels.get("pool_name") or ""
        for sample in metadata.samples
    }
    used = metrics.query_instant("ceph_pool_bytes_used")
    stored = metrics.query_instant("ceph_pool_stored")

    entries: list[PoolUsageEntry] = []
    for sample in used.samples:
        pool_id = sample.labels.get("pool_id", "")
        name = names.get(pool_id) or f"pool_id_{pool_id}"
        entries.append(
            PoolUsageEntry(
                name=name,
                used_bytes=normalize_bytes(sample.value, "bytes_used", cluster_total_bytes),
                stored_bytes=normalize_bytes(
                    extract_scalar(stored, {"pool_id": pool_id}), "stored", cluster_total_bytes
                ),
                suspected_test_pool=is_suspected_test_pool_name(name),
            )
        )
    return entries


def _pool_usage_from_df(toolbox: CephToolbox, cluster_total_bytes: int) -> list[PoolUsageEntry]:
    try:
        df = toolbox.df_detail()
    except CephCommandError as error:
        logger.warning("ceph df detail failed, no pool usage available: %s", error)
        return []

    entries: list[PoolUsageEntry] = []
    for pool in df.get("pools") or []:
        name = str(pool.get("name") or "")
        if not name:
            continue
        stats = pool.get("stats") or {}
        if "bytes_used" in stats:
            used = normalize_bytes(stats.get("bytes_used"), "bytes_used", cluster_total_bytes)
        else:
            used = normalize_bytes(stats.get("kb_used"), "kb_used", cluster_total_bytes)
        entries.append(
            PoolUsageEntry(
                name=name,
                used_bytes=used,
                stored_bytes=normalize_bytes(stats.get("stored"), "stored", cluster_total_bytes),
                suspected_test_pool=is_suspected_test_pool_name(name),
            )
        )
    return entries


def collect_capacity_trend(metrics: MetricsClient, *, window_hours: int, now: datetime) -> dict[str, Any]:
    if window_hours <= 0:
        return {}

    start = now - timedelta(hours=window_hours)
    result = metrics.query_range("sum(ceph_pool_stored)", start, now, TREND_STEP)
    values = result.samples[0].values if result.samples else ()
    if not values:
        return {"window_hours": window_hours, "points": 0, "first_bytes": 0, "last_bytes": 0, "delta_bytes": 0}

    first = int(values[0][1])
    last = int(values[-1][1])
    return {
        "window_hours": window_hours,
        "points": len(values),
        "first_bytes": first,
        "last_bytes": last,
        "delta_bytes": last - first,
    }


def _claim_bucket_name(obc: dict[str, Any]) -> str:
    spec = obc.get("spec") or {}
    return str(spec.get("bucketName") or "").strip()


def _secret_bucket_name(secret: Any) -> str:
    data = getattr(secret, "data", None) or {}
    encoded = data.get("BUCKET_NAME")
    if not encoded:
        return ""
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8").strip()
    except (binascii.Error, UnicodeDecodeError):
        logger.warning("Ignoring secret with undecodable BUCKET_NAME")
        return ""
