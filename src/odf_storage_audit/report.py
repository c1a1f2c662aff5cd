"""Structured report assembly and the text views derived from it.

Every ``render_*`` function reads only the report mapping, so text artifacts
can be regenerated from ``report.json`` at any time and come out identical.
"""

from __future__ import annotations

import json
import shlex
import logging
from pathlib import Path
from typing import Any, Iterable

from odf_storage_audit.classify import bucket_row, image_row, pool_row
from odf_storage_audit.cleanup import bucket_command, rbd_command, render_cleanup_script, toolbox_prefix
from odf_storage_audit.models import (
    BlockImageRecord,
    BucketRecord,
    BuilderFailure,
    ClaimRecord,
    ClusterStatus,
    FilesystemUsage,
    KubernetesCounts,
    PoolUsageEntry,
    SubvolumeRecord,
)
from odf_storage_audit.normalize import human_readable

logger = logging.getLogger(__name__)

REPORT_JSON = "report.json"
SUMMARY_TXT = "SUMMARY.txt"
REPORT_TXT = "report.txt"
ORPHANS_TXT = "potential-orphans.txt"
TOP_CONSUMERS_TXT = "top-consumers.txt"
CLEANUP_SH = "cleanup-commands.sh"
TOP_LIMIT = 10
TOP_CLAIMS_LIMIT = 20
TOP_NAMESPACES_LIMIT = 15


class ReportFormatError(RuntimeError):
    """Raised when a stored report cannot be loaded."""


def assemble_report(
    *,
    generated_at: str,
    output_dir: Path,
    data_sources: dict[str, str],
    cluster: ClusterStatus,
    counts: KubernetesCounts,
    images: Iterable[BlockImageRecord],
    buckets: Iterable[BucketRecord],
    subvolumes: Iterable[SubvolumeRecord],
    pools: Iterable[PoolUsageEntry],
    filesystems: Iterable[FilesystemUsage] = (),
    claims: Iterable[ClaimRecord] = (),
    orphans: dict[str, Any],
    failures: Iterable[BuilderFailure] = (),
    trend: dict[str, Any] | None = None,
    reconciliation: dict[str, Any] | None = None,
    bucket_bindings: int = 0,
) -> dict[str, Any]:
    rbd = [image_row(record) for record in sorted(images, key=lambda record: record.key)]
    rgw = [bucket_row(record) for record in sorted(buckets, key=lambda record: record.key)]
    cephfs = [
        {
            "fs": record.filesystem,
            "group": record.group,
            "name": record.name,
            "bytes_quota": record.bytes_quota,
        }
        for record in sorted(subvolumes, key=lambda record: record.key)
    ]
    filesystem_rows = [
        {"name": usage.name, "total_bytes": usage.total_bytes, "total_files": usage.total_files}
        for usage in sorted(filesystems, key=lambda usage: usage.name)
    ]
    claim_rows = [
        {
            "namespace": record.namespace,
            "name": record.name,
            "requested": record.requested,
            "requested_bytes": record.requested_bytes,
            "volume_name": record.volume_name,
        }
        for record in sorted(claims, key=lambda record: record.key)
    ]
    pool_rows = [pool_row(entry) for entry in pools]
    capacity = cluster.capacity

    return {
        "generated_at": generated_at,
        "output_dir": str(output_dir),
        "data_sources": dict(sorted(data_sources.items())),
        "cluster": {
            "health": cluster.health,
            "osds": cluster.osds,
            "mons": cluster.mons,
            "capacity": {
                "raw_total_bytes": capacity.raw_total_bytes,
                "raw_used_bytes": capacity.raw_used_bytes,
                "stored_bytes": capacity.stored_bytes,
                "efficiency_ratio": capacity.efficiency_ratio,
            },
        },
        "stats": {
            "pools": len(pool_rows),
            "suspected_pools": orphans["summary"]["suspected_pool_count"],
            "rbd_images": len(rbd),
            "rbd_orphans": orphans["summary"]["rbd_orphan_count"],
            "rbd_high_confidence_orphans": orphans["summary"]["rbd_high_confidence"],
            "rbd_review": orphans["summary"]["rbd_review"],
            "rbd_test_pattern": orphans["summary"]["rbd_test_pattern"],
            "rgw_buckets": len(rgw),
            "rgw_orphans": orphans["summary"]["rgw_orphan_count"],
            "rgw_high_confidence_orphans": orphans["summary"]["rgw_high_confidence"],
            "rgw_review": orphans["summary"]["rgw_review"],
            "loki_buckets": len(orphans["rgw"]["loki_related"]),
            "cephfs_subvolumes": len(cephfs),
            "cephfs_filesystems": len(filesystem_rows),
            "pv_total": counts.pv_total,
            "pvc_total": counts.pvc_total,
            "pvc_requested_bytes": sum(row["requested_bytes"] for row in claim_rows),
            "obc_total": counts.obc_total,
            "ob_total": counts.ob_total,
            "rbd_pvs": counts.rbd_pvs,
            "cephfs_pvs": counts.cephfs_pvs,
            "bucket_bindings": bucket_bindings,
        },
        "datasets": {
            "rbd": rbd,
            "rgw": rgw,
            "cephfs": cephfs,
            "cephfs_filesystems": filesystem_rows,
            "pools": pool_rows,
            "pvcs": claim_rows,
        },
        "orphans": orphans,
        "failures": [{"builder": failure.builder, "error": failure.error} for failure in failures],
        "trend": trend or {},
        "reconciliation": reconciliation or {},
    }


def dump_report(report: dict[str, Any]) -> str:
    return json.dumps(report, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def load_report(report_dir: Path) -> dict[str, Any]:
    path = report_dir / REPORT_JSON
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as error:
        raise ReportFormatError(f"Unable to read {path}: {error}. Run 'odf-audit run' first.") from error
    except json.JSONDecodeError as error:
        raise ReportFormatError(f"{path} is not valid JSON: {error}") from error

    missing = [key for key in ("generated_at", "cluster", "stats", "datasets", "orphans") if key not in payload]
    if missing:
        raise ReportFormatError(f"{path} is missing required field(s): {', '.join(missing)}")
    return payload


def write_artifacts(report: dict[str, Any], output_dir: Path) -> list[Path]:
    data_dir = output_dir / "data"
    data_dir.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    datasets = report["datasets"]
    for filename, key in (
        ("rbd-images.json", "rbd"),
        ("rgw-buckets.json", "rgw"),
        ("cephfs-subvols.json", "cephfs"),
        ("cephfs-filesystems.json", "cephfs_filesystems"),
        ("pools.json", "pools"),
        ("pvcs.json", "pvcs"),
    ):
        written.append(_write(data_dir / filename, dump_report(datasets.get(key, []))))
    written.append(_write(data_dir / "orphans.json", dump_report(report["orphans"])))
    written.append(_write(output_dir / REPORT_JSON, dump_report(report)))
    written.extend(write_text_views(report, output_dir))
    return written


def write_text_views(report: dict[str, Any], output_dir: Path) -> list[Path]:
    views = {
        SUMMARY_TXT: render_summary(report),
        REPORT_TXT: render_report_text(report),
        ORPHANS_TXT: render_potential_orphans(report),
        TOP_CONSUMERS_TXT: render_top_consumers(report),
        CLEANUP_SH: render_cleanup_script(report),
    }
    written = [_write(output_dir / name, content) for name, content in views.items()]
    logger.info("Wrote %s text views to %s", len(written), output_dir)
    return written


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


def render_summary(report: dict[str, Any]) -> str:
    stats = report["stats"]
    cluster = report["cluster"]
    capacity = cluster.get("capacity", {})
    output_dir = report.get("output_dir", ".")
    summary = report["orphans"].get("summary", {})
    lines = [
        "=== ODF STORAGE AUDIT SUMMARY ===",
        f"Generated: {report['generated_at']}",
        "",
        f"Cluster health: {cluster.get('health', 'unknown')}",
        f"OSDs: {cluster.get('osds', 0)} | MONs: {cluster.get('mons', 0)}",
        f"Raw capacity: {human_readable(capacity.get('raw_total_bytes'))} | "
        f"Used: {human_readable(capacity.get('raw_used_bytes'))} | "
        f"Stored: {human_readable(capacity.get('stored_bytes'))} | "
        f"Efficiency: {capacity.get('efficiency_ratio', 0)}x",
        "",
        f"Pools tracked: {stats.get('pools', 0)}",
        f"RBD images: {stats.get('rbd_images', 0)} | Orphans: {stats.get('rbd_orphans', 0)} | "
        f"High confidence: {stats.get('rbd_high_confidence_orphans', 0)}",
        f"RGW buckets: {stats.get('rgw_buckets', 0)} | Orphans: {stats.get('rgw_orphans', 0)} | "
        f"High confidence: {stats.get('rgw_high_confidence_orphans', 0)}",
        f"Loki buckets: {stats.get('loki_buckets', 0)}",
        f"Suspected test/benchmark pools: {stats.get('suspected_pools', 0)}",
        f"CephFS subvolumes: {stats.get('cephfs_subvolumes', 0)}",
        f"Reclaimable (high confidence): {human_readable(summary.get('reclaimable_bytes'))}",
        "",
        f"K8s PVs: {stats.get('pv_total', 0)} | PVCs: {stats.get('pvc_total', 0)} | OBCs: {stats.get('obc_total', 0)}",
    ]
    reconciliation = report.get("reconciliation") or {}
    if reconciliation:
        lines.append(
            f"Audit history: {reconciliation.get('runs_recorded', 0)} runs with orphans recorded | "
            f"Confirmed on re-run: {len(reconciliation.get('confirmed') or [])}"
        )
    failures = report.get("failures") or []
    if failures:
        lines.extend(["", f"Incomplete sections: {', '.join(item['builder'] for item in failures)}"])
    lines.extend(
        [
            "",
            f"Full report: {output_dir}/{REPORT_TXT}",
            f"Orphan review: {output_dir}/{ORPHANS_TXT}",
            f"JSON data: {output_dir}/{REPORT_JSON}",
        ]
    )
    return "\n".join(lines) + "\n"


def render_report_text(report: dict[str, Any]) -> str:
    stats = report["stats"]
    cluster = report["cluster"]
    capacity = cluster.get("capacity", {})
    datasets = report["datasets"]
    sources = report.get("data_sources", {})
    lines: list[str] = []

    _section(lines, "ODF / Ceph Storage Audit")
    lines.append(f"Generated: {report['generated_at']}")
    lines.append(f"rook-ceph-tools pod: {sources.get('tools_pod', 'unknown')}")
    lines.append(f"Metrics endpoint: {sources.get('prometheus', 'none')}")
    lines.append(f"Output directory: {report.get('output_dir', '.')}")

    _section(lines, "Kubernetes Storage Inventory")
    lines.append(
        f"PVs total: {stats.get('pv_total', 0)} "
        f"(RBD: {stats.get('rbd_pvs', 0)}, CephFS: {stats.get('cephfs_pvs', 0)})"
    )
    lines.append(f"PVCs total: {stats.get('pvc_total', 0)}")
    lines.append(f"ObjectBucketClaims total: {stats.get('obc_total', 0)}")

    _section(lines, "Ceph Cluster Status")
    lines.append(f"Health: {cluster.get('health', 'unknown')}")
    lines.append(f"MONs: {cluster.get('mons', 0)} | OSDs: {cluster.get('osds', 0)}")
    lines.append(f"Raw Capacity: {human_readable(capacity.get('raw_total_bytes'))}")
    lines.append(f"Used (with replication): {human_readable(capacity.get('raw_used_bytes'))}")
    lines.append(f"Stored (client data): {human_readable(capacity.get('stored_bytes'))}")
    lines.append(f"Storage Efficiency: {capacity.get('efficiency_ratio', 0)}x")
    trend = report.get("trend") or {}
    if trend.get("points"):
        lines.append(
            f"Stored change over {trend['window_hours']}h: "
            f"{_signed(trend.get('delta_bytes', 0))} ({trend['points']} samples)"
        )

    _subsection(lines, "Top pools by usage")
    pools = datasets.get("pools", [])
    if not pools:
        lines.append("  (no pool data)")
    for pool in pools[:TOP_LIMIT]:
        marker = " | SUSPECTED TEST POOL" if pool.get("suspected_test_pool") else ""
        lines.append(f"  {pool['name']:<35} {human_readable(pool.get('used_bytes')):>12}{marker}")

    _section(lines, "RBD Pools & Images")
    images = datasets.get("rbd", [])
    if not images:
        lines.append("No RBD images detected")
    current_pool = None
    for image in images:
        if image["pool"] != current_pool:
            current_pool = image["pool"]
            _subsection(lines, f"Pool: {current_pool}")
        watchers = image["watcher_count"] if image.get("watchers_known", True) else "?"
        line = (
            f"  {image['pool'] + '/' + image['image']:<60} {image['size_human']:>12} | "
            f"watchers: {watchers} | bound: {str(image['has_pv']).lower()}"
        )
        if image.get("test_pattern"):
            line += " | TEST"
        lines.append(line)
    lines.append(f"Total RBD images: {stats.get('rbd_images', 0)}")
    lines.append(f"Potential orphaned images: {stats.get('rbd_orphans', 0)}")
    if stats.get("rbd_test_pattern"):
        lines.append(f"Test/benchmark pattern images: {stats['rbd_test_pattern']} (review manually)")

    _section(lines, "CephFS")
    for usage in datasets.get("cephfs_filesystems", []):
        if usage.get("total_bytes"):
            lines.append(
                f"  {usage['name']}: {human_readable(usage['total_bytes'])} managed, "
                f"{usage.get('total_files', 0)} files"
            )
    subvolumes = datasets.get("cephfs", [])
    if not subvolumes:
        lines.append("No CephFS subvolumes detected")
    groups: dict[tuple[str, str], int] = {}
    for subvolume in subvolumes:
        key = (subvolume["fs"], subvolume["group"])
        groups[key] = groups.get(key, 0) + 1
    for (filesystem, group), count in sorted(groups.items()):
        lines.append(f"  {filesystem} / group {group}: {count} subvolumes")

    _section(lines, "RGW Buckets")
    buckets = datasets.get("rgw", [])
    if not buckets:
        lines.append("No RGW buckets detected (RGW may be disabled)")
    for bucket in buckets:
        line = (
            f"  {bucket['name']:<50} {bucket['size_human']:>12} | objects: {bucket['objects']:<10} | "
            f"OBC: {str(bucket['has_obc']).lower()}"
        )
        if bucket.get("tags", {}).get("loki"):
            line += " | LOKI"
        lines.append(line)
    lines.append(f"Total buckets: {stats.get('rgw_buckets', 0)}")
    lines.append(f"Buckets without OBC: {stats.get('rgw_orphans', 0)}")
    if stats.get("loki_buckets"):
        lines.append(f"Loki/logging buckets: {stats['loki_buckets']} (may be operational)")

    failures = report.get("failures") or []
    if failures:
        _section(lines, "Incomplete Sections")
        for failure in failures:
            lines.append(f"  {failure['builder']}: {failure['error']}")

    _section(lines, "Orphan Detection Summary")
    summary = report["orphans"].get("summary", {})
    lines.append(f"RBD orphans (no PV): {summary.get('rbd_orphan_count', 0)}")
    lines.append(f"RBD high confidence: {summary.get('rbd_high_confidence', 0)}")
    lines.append(f"RBD manual review: {summary.get('rbd_review', 0)}")
    lines.append(f"RGW orphans (no OBC): {summary.get('rgw_orphan_count', 0)}")
    lines.append(f"RGW high confidence: {summary.get('rgw_high_confidence', 0)}")
    lines.append(f"RGW manual review: {summary.get('rgw_review', 0)}")
    lines.append(f"Detailed review file: {report.get('output_dir', '.')}/{ORPHANS_TXT}")
    return "\n".join(lines) + "\n"


def render_potential_orphans(report: dict[str, Any]) -> str:
    orphans = report["orphans"]
    prefix = toolbox_prefix(report)
    lines = [
        "=" * 81,
        "POTENTIAL ORPHANED RESOURCES - MANUAL REVIEW REQUIRED",
        "=" * 81,
        "",
        "This report categorizes potential orphaned resources by confidence level.",
        "Review each section carefully before taking any cleanup actions.",
        "",
        "CONFIDENCE LEVELS:",
        "  HIGH       - Strong evidence of orphan status, low risk of disruption",
        "  MEDIUM     - Some evidence, requires verification before cleanup",
        "  LOW        - May be in use, proceed with extreme caution",
    ]

    _tier(
        lines,
        "HIGH CONFIDENCE: ORPHANED RBD IMAGES",
        ["These RBD images have NO PersistentVolume, NO watchers, and contain data."],
        [
            [
                f"  {row['pool']}/{row['image']}",
                f"    Size: {row['size_human']}",
                f"    Watchers: {_watchers(row)}",
                f"    Verify: {rbd_command(prefix, 'status', row['pool'], row['image'])}",
            ]
            for row in orphans["rbd"].get("high_confidence_orphans", [])
        ],
    )
    _tier(
        lines,
        "HIGH CONFIDENCE: ORPHANED RGW BUCKETS",
        ["These buckets have NO ObjectBucketClaim, NO provisioner secret, and are NOT Loki/logging related."],
        [
            [
                f"  {row['name']}",
                f"    Size: {row['size_human']}",
                f"    Objects: {row['objects']}",
                f"    Owner: {row['owner']}",
                f"    Verify: {bucket_command(prefix, 'stats', row['name'])}",
            ]
            for row in orphans["rgw"].get("high_confidence_orphans", [])
        ],
    )
    _tier(
        lines,
        "MEDIUM CONFIDENCE: RBD IMAGES (verify before cleanup)",
        [
            "These images have NO PersistentVolume but HAVE active watchers, or their",
            "watcher status could not be read. Verify watchers are not stale.",
        ],
        [
            [
                f"  {row['pool']}/{row['image']}",
                f"    Size: {row['size_human']}",
                f"    Watchers: {_watchers(row)}",
                f"    Check: {rbd_command(prefix, 'status', row['pool'], row['image'])}",
            ]
            for row in orphans["rbd"].get("review", [])
        ],
    )
    _tier(
        lines,
        "MEDIUM CONFIDENCE: RGW BUCKETS (Loki/Logging related)",
        [
            "These buckets have NO OBC but appear to be Loki/logging buckets.",
            "They may be operational. Verify with the logging owners before cleanup.",
        ],
        [
            [
                f"  {row['name']}",
                f"    Size: {row['size_human']}",
                f"    Objects: {row['objects']}",
                f"    Check: oc get cm,secrets -A -o yaml | grep {shlex.quote(row['name'])}",
            ]
            for row in orphans["rgw"].get("review", [])
        ],
    )
    _tier(
        lines,
        "LOW CONFIDENCE: TEST/BENCHMARK PATTERN IMAGES",
        [
            "These images have test/benchmark/fio patterns in their names.",
            "They may still be in active use. Verify with the owning teams.",
        ],
        [
            [
                f"  {row['pool']}/{row['image']}",
                f"    Size: {row['size_human']}",
                f"    Watchers: {_watchers(row)}",
                f"    Has PV: {str(row['has_pv']).lower()}",
                f"    Check: {rbd_command(prefix, 'status', row['pool'], row['image'])}",
            ]
            for row in orphans["rbd"].get("test_pattern", [])
        ],
    )
    _tier(
        lines,
        "SUSPECTED TEST/BENCHMARK POOLS",
        ["Pools whose names follow test/benchmark conventions."],
        [
            [
                f"  {row['name']}",
                f"    Used: {row['used_human']}",
                f"    Check: {prefix} ceph osd pool stats {shlex.quote(row['name'])}",
            ]
            for row in orphans.get("suspected_pools", [])
        ],
    )

    confirmed = (report.get("reconciliation") or {}).get("confirmed") or []
    if confirmed:
        days = report["reconciliation"].get("min_age_days", 0)
        _tier(
            lines,
            f"CONFIRMED ON RE-RUN (orphaned for at least {days} days)",
            ["These high-confidence orphans were already reported by an earlier audit."],
            [[f"  {entry['kind']}: {entry['key']} (first seen {entry['first_seen']})"] for entry in confirmed],
        )

    lines.extend(
        [
            "",
            "=" * 81,
            "VERIFICATION STEPS BEFORE CLEANUP",
            "=" * 81,
            "",
            "Before deleting ANY resource, complete these verification steps:",
            "",
            "1. Check cluster events for the resource:",
            "   oc get events -A | grep <resource-name>",
            "",
            "2. Verify no active pods are using the resource:",
            "   oc get pods -A -o wide | grep <resource-name>",
            "",
            "3. For RBD images, check watchers:",
            f"   {prefix} rbd status <pool>/<image>",
            "",
            "4. For buckets, search application configs:",
            "   oc get cm,secrets -A -o yaml | grep <bucket-name>",
            "",
            "5. Wait 7 days and re-run the audit to confirm the resource is still orphaned.",
            "",
            "6. Use 'odf-audit cleanup <report-dir>' to generate commented-out cleanup commands.",
            "",
            "This report is for MANUAL REVIEW only. Do NOT automate cleanup based on it.",
            "",
            f"Generated: {report['generated_at']}",
        ]
    )
    return "\n".join(lines) + "\n"


def render_top_consumers(report: dict[str, Any]) -> str:
    datasets = report["datasets"]
    summary = report["orphans"].get("summary", {})
    lines = ["=== ODF TOP SPACE CONSUMERS REPORT ===", f"Generated: {report['generated_at']}"]

    _section(lines, "1. POOLS BY SIZE (Largest First)")
    for pool in datasets.get("pools", [])[:TOP_LIMIT]:
        lines.append(f"  {pool['name']:<35} {human_readable(pool.get('used_bytes')):>12}")

    _section(lines, "2. TOP RBD IMAGES BY SIZE")
    images = sorted(datasets.get("rbd", []), key=lambda row: (-row["size_bytes"], row["pool"], row["image"]))
    for image in images[:TOP_LIMIT]:
        lines.append(f"  {image['pool'] + '/' + image['image']:<60} {image['size_human']:>12}")

    _section(lines, "3. TOP RGW BUCKETS BY SIZE")
    buckets = sorted(datasets.get("rgw", []), key=lambda row: (-row["size_bytes"], row["name"]))
    for bucket in buckets[:TOP_LIMIT]:
        lines.append(f"  {bucket['name']:<45} {bucket['size_human']:>12} ({bucket['objects']} objects)")

    _section(lines, "4. TOP PVCs BY REQUESTED SIZE")
    claims = top_claims(datasets.get("pvcs", []))
    if not claims:
        lines.append("  (no PVCs with a storage request)")
    for claim in claims:
        lines.append(
            f"  {claim['namespace'] + '/' + claim['name']:<50} {claim['requested']:>15} (PV: {claim['volume_name']})"
        )

    _section(lines, "5. TOP NAMESPACES BY TOTAL PVC SIZE")
    for namespace, total in namespace_totals(datasets.get("pvcs", []))[:TOP_NAMESPACES_LIMIT]:
        lines.append(f"  {namespace:<40} {human_readable(total):>12}")

    _section(lines, "6. POTENTIAL SPACE SAVINGS FROM CLEANUP")
    lines.append(f"  RBD high-confidence orphans: {summary.get('rbd_high_confidence', 0)}")
    lines.append(f"  RGW high-confidence orphans: {summary.get('rgw_high_confidence', 0)}")
    lines.append(f"  Suspected benchmark/test pools: {summary.get('suspected_pool_count', 0)}")
    lines.append(f"  Reclaimable (high confidence): {human_readable(summary.get('reclaimable_bytes'))}")

    stats = report["stats"]
    _section(lines, "7. STORAGE TYPE BREAKDOWN")
    lines.append(
        f"  PVs total: {stats.get('pv_total', 0)} | PVCs: {stats.get('pvc_total', 0)} | "
        f"OBCs: {stats.get('obc_total', 0)}"
    )
    lines.append(f"  RBD PVs: {stats.get('rbd_pvs', 0)} | CephFS PVs: {stats.get('cephfs_pvs', 0)}")
    lines.append(f"  PVC requested total: {human_readable(stats.get('pvc_requested_bytes'))}")
    lines.append(f"  RBD images tracked: {stats.get('rbd_images', 0)}")
    lines.append(f"  RGW buckets tracked: {stats.get('rgw_buckets', 0)}")
    lines.append(f"  CephFS subvolumes tracked: {stats.get('cephfs_subvolumes', 0)}")
    return "\n".join(lines) + "\n"


def top_claims(rows: list[dict[str, Any]], limit: int = TOP_CLAIMS_LIMIT) -> list[dict[str, Any]]:
    ordered = sorted(rows, key=lambda row: (-row["requested_bytes"], row["namespace"], row["name"]))
    return ordered[:limit]


def namespace_totals(rows: list[dict[str, Any]]) -> list[tuple[str, int]]:
    totals: dict[str, int] = {}
    for row in rows:
        totals[row["namespace"]] = totals.get(row["namespace"], 0) + row["requested_bytes"]
    return sorted(totals.items(), key=lambda item: (-item[1], item[0]))


def _section(lines: list[str], title: str) -> None:
    lines.extend(["", f"=== {title} ==="])


def _subsection(lines: list[str], title: str) -> None:
    lines.extend(["", f"--- {title} ---"])


def _tier(lines: list[str], title: str, intro: list[str], entries: list[list[str]]) -> None:
    lines.extend(["", f"=== {title} ===", "", *intro, ""])
    if not entries:
        lines.append("  (none detected)")
        return
    for entry in entries:
        lines.extend(entry)
        lines.append("")


def _signed(value: int) -> str:
    sign = "-" if value < 0 else "+"
    return f"{sign}{human_readable(abs(value))}"


def _watchers(row: dict[str, Any]) -> str:
    return str(row["watcher_count"]) if row.get("watchers_known", True) else "unknown"
