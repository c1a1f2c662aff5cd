from __future__ import annotations

from pathlib import Path
from typing import Any
import os

import streamlit as st

from odf_storage_audit.cleanup import bucket_command, rbd_command, render_cleanup_script, toolbox_prefix
from odf_storage_audit.config import AuditConfig
from odf_storage_audit.history import AuditHistoryStore
from odf_storage_audit.normalize import human_readable
from odf_storage_audit.report import REPORT_JSON, ReportFormatError, load_report

_TIER_RBD_HIGH = "High confidence: RBD images"
_TIER_RGW_HIGH = "High confidence: RGW buckets"
_TIER_RBD_REVIEW = "Review: RBD images"
_TIER_RGW_REVIEW = "Review: RGW buckets (logging related)"
_TIER_RBD_TEST = "Test pattern: RBD images"

_TIER_LABELS = (_TIER_RBD_HIGH, _TIER_RGW_HIGH, _TIER_RBD_REVIEW, _TIER_RGW_REVIEW, _TIER_RBD_TEST)

_REPORT_DIR_GLOB = "odf-audit-*"


def _initialize_state() -> None:
    defaults = {
        "report": None,
        "report_dir": "",
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


def _find_latest_report_dir(search_root: Path = Path("/tmp")) -> Path | None:
    candidates = [path for path in search_root.glob(_REPORT_DIR_GLOB) if (path / REPORT_JSON).is_file()]
    if not candidates:
        return None
    return max(candidates, key=lambda path: path.name)


def _default_report_dir() -> str:
    configured = os.getenv("ODF_AUDIT_DIR", "").strip()
    if configured:
        return configured
    latest = _find_latest_report_dir()
    return str(latest) if latest else ""


def _validate_report_dir_input(report_dir_input: str) -> str | None:
    normalized = report_dir_input.strip()
    if not normalized:
        return "Report directory is required. Run 'odf-audit run' first, then paste its output directory."

    path = Path(normalized).expanduser()
    if not path.is_dir():
        return f"Report directory does not exist: {path}"
    if not (path / REPORT_JSON).is_file():
        return f"No {REPORT_JSON} in {path}. Regenerate it with 'odf-audit run --output-dir {path}'."
    return None


def _build_summary_rows(report: dict[str, Any]) -> list[dict[str, str]]:
    stats = report.get("stats", {})
    cluster = report.get("cluster", {})
    capacity = cluster.get("capacity", {})
    reconciliation = report.get("reconciliation") or {}
    summary = report.get("orphans", {}).get("summary", {})
    return [
        {"metric": "Cluster health", "value": str(cluster.get("health", "unknown"))},
        {"metric": "Raw capacity", "value": human_readable(capacity.get("raw_total_bytes"))},
        {"metric": "Raw used", "value": human_readable(capacity.get("raw_used_bytes"))},
        {"metric": "Stored", "value": human_readable(capacity.get("stored_bytes"))},
        {"metric": "RBD images", "value": str(stats.get("rbd_images", 0))},
        {"metric": "RBD high-confidence orphans", "value": str(summary.get("rbd_high_confidence", 0))},
        {"metric": "RGW buckets", "value": str(stats.get("rgw_buckets", 0))},
        {"metric": "RGW high-confidence orphans", "value": str(summary.get("rgw_high_confidence", 0))},
        {"metric": "Suspected test pools", "value": str(summary.get("suspected_pool_count", 0))},
        {"metric": "Reclaimable (high confidence)", "value": human_readable(summary.get("reclaimable_bytes"))},
        {"metric": "Audit runs with orphans recorded", "value": str(reconciliation.get("runs_recorded", 0))},
        {"metric": "Confirmed on re-run", "value": str(len(reconciliation.get("confirmed") or []))},
    ]


def _build_tier_rows(report: dict[str, Any], tier_label: str) -> list[dict[str, str]]:
    orphans = report.get("orphans", {})
    prefix = toolbox_prefix(report)
    rbd = orphans.get("rbd", {})
    rgw = orphans.get("rgw", {})

    if tier_label in (_TIER_RBD_HIGH, _TIER_RBD_REVIEW, _TIER_RBD_TEST):
        source = {
            _TIER_RBD_HIGH: rbd.get("high_confidence_orphans", []),
            _TIER_RBD_REVIEW: rbd.get("review", []),
            _TIER_RBD_TEST: rbd.get("test_pattern", []),
        }[tier_label]
        return [
            {
                "image": f"{row['pool']}/{row['image']}",
                "size": row.get("size_human") or human_readable(row.get("size_bytes")),
                "watchers": str(row["watcher_count"]) if row.get("watchers_known", True) else "unknown",
                "bound": "yes" if row.get("has_pv") else "no",
                "verify": rbd_command(prefix, "status", row["pool"], row["image"]),
            }
            for row in source
        ]

    if tier_label in (_TIER_RGW_HIGH, _TIER_RGW_REVIEW):
        source = rgw.get("high_confidence_orphans", []) if tier_label == _TIER_RGW_HIGH else rgw.get("review", [])
        return [
            {
                "bucket": row["name"],
                "owner": row.get("owner", "unknown"),
                "size": row.get("size_human") or human_readable(row.get("size_bytes")),
                "objects": str(row.get("objects", 0)),
                "verify": bucket_command(prefix, "stats", row["name"]),
            }
            for row in source
        ]

    raise ValueError(f"Unknown tier label: {tier_label}")


def _build_pool_rows(report: dict[str, Any]) -> list[dict[str, str]]:
    return [
        {
            "pool": row["name"],
            "used": human_readable(row.get("used_bytes")),
            "stored": human_readable(row.get("stored_bytes")),
            "suspected_test_pool": "yes" if row.get("suspected_test_pool") else "no",
        }
        for row in report.get("datasets", {}).get("pools", [])
    ]


def _build_failure_rows(report: dict[str, Any]) -> list[dict[str, str]]:
    return [
        {"section": str(item.get("builder", "")), "error": str(item.get("error", ""))}
        for item in report.get("failures") or []
    ]


def _build_sighting_rows(rows: list[dict[str, Any]]) -> list[dict[str, str]]:
    return [
        {
            "kind": str(row.get("kind", "")),
            "resource": str(row.get("resource_key", "")),
            "size": human_readable(row.get("size_bytes")),
            "seen_at": str(row.get("seen_at", "")),
        }
        for row in rows
    ]


def main() -> None:
    st.set_page_config(page_title="ODF Storage Audit", layout="wide")
    _initialize_state()

    base_config = AuditConfig()

    st.title("ODF Storage Audit")
    st.caption("Review orphan candidates from a completed audit. This page never talks to the cluster.")

    st.sidebar.header("Report")
    report_dir_input = st.sidebar.text_input(
        "Report directory",
        value=st.session_state.report_dir or _default_report_dir(),
        help="Output directory of 'odf-audit run'.",
    )
    if st.sidebar.button("Load report", type="primary", use_container_width=True):
        validation_error = _validate_report_dir_input(report_dir_input)
        if validation_error:
            st.sidebar.error(validation_error)
        else:
            report_dir = Path(report_dir_input.strip()).expanduser()
            try:
                st.session_state.report = load_report(report_dir)
                st.session_state.report_dir = str(report_dir)
                st.sidebar.success(f"Loaded {report_dir / REPORT_JSON}")
            except ReportFormatError as exc:
                st.session_state.report = None
                st.sidebar.error(str(exc))

    report: dict[str, Any] | None = st.session_state.report
    if report is None:
        st.info("Load a report directory from the sidebar to begin.")
        return

    st.caption(f"Generated {report.get('generated_at', 'unknown')} from {st.session_state.report_dir}")

    summary = report.get("orphans", {}).get("summary", {})
    summary_columns = st.columns(3)
    summary_columns[0].metric("RBD high confidence", summary.get("rbd_high_confidence", 0))
    summary_columns[1].metric("RGW high confidence", summary.get("rgw_high_confidence", 0))
    summary_columns[2].metric("Reclaimable", human_readable(summary.get("reclaimable_bytes")))

    failure_rows = _build_failure_rows(report)
    if failure_rows:
        st.warning("Some sections are incomplete; their datasets are empty in this report.")
        st.dataframe(failure_rows, use_container_width=True, hide_index=True)

    st.subheader("Summary")
    st.dataframe(_build_summary_rows(report), use_container_width=True, hide_index=True)

    st.subheader("Orphan Candidates")
    for tier_label, tab in zip(_TIER_LABELS, st.tabs(list(_TIER_LABELS))):
        with tab:
            rows = _build_tier_rows(report, tier_label)
            if rows:
                st.dataframe(rows, use_container_width=True, hide_index=True)
            else:
                st.info("None detected.")

    st.subheader("Pools")
    pool_rows = _build_pool_rows(report)
    if pool_rows:
        st.dataframe(pool_rows, use_container_width=True, hide_index=True)
    else:
        st.info("No pool usage data in this report.")

    st.subheader("Cleanup Suggestions")
    st.caption("Every destructive command is commented out. Verify each resource before uncommenting anything.")
    st.download_button(
        "Download cleanup-commands.sh",
        data=render_cleanup_script(report),
        file_name="cleanup-commands.sh",
        mime="text/x-shellscript",
    )

    st.subheader("Recent Orphan Sightings")
    history_path = base_config.history_db_path
    if history_path.is_file():
        sighting_rows = _build_sighting_rows(AuditHistoryStore(history_path).get_recent_sightings(limit=100))
        st.dataframe(sighting_rows, use_container_width=True, hide_index=True)
    else:
        st.info(f"No audit history at {history_path}. It is created by the first 'odf-audit run'.")


if __name__ == "__main__":
    main()
