from __future__ import annotations

from pathlib import Path

import pytest

from fakes import POOL, sample_report
from odf_storage_audit.app import (
    _TIER_LABELS,
    _TIER_RBD_HIGH,
    _TIER_RBD_REVIEW,
    _TIER_RGW_HIGH,
    _TIER_RGW_REVIEW,
    _build_failure_rows,
    _build_pool_rows,
    _build_sighting_rows,
    _build_summary_rows,
    _build_tier_rows,
    _find_latest_report_dir,
    _validate_report_dir_input,
)


def test_validate_report_dir_input_requires_value() -> None:
    error = _validate_report_dir_input("   ")

    assert error is not None
    assert "required" in error


def test_validate_report_dir_input_rejects_missing_directory(tmp_path: Path) -> None:
    error = _validate_report_dir_input(str(tmp_path / "missing"))

    assert error is not None
    assert "does not exist" in error


def test_validate_report_dir_input_rejects_directory_without_report(tmp_path: Path) -> None:
    error = _validate_report_dir_input(str(tmp_path))

    assert error is not None
    assert "No report.json" in error


def test_validate_report_dir_input_accepts_directory_with_report(tmp_path: Path) -> None:
    (tmp_path / "report.json").write_text("{}", encoding="utf-8")

    assert _validate_report_dir_input(f"  {tmp_path}  ") is None


def test_find_latest_report_dir_picks_newest_with_report(tmp_path: Path) -> None:
    for name in ("odf-audit-20261001-000000", "odf-audit-20261017-000000", "odf-audit-20261018-000000"):
        (tmp_path / name).mkdir()
    (tmp_path / "odf-audit-20261001-000000" / "report.json").write_text("{}", encoding="utf-8")
    (tmp_path / "odf-audit-20261017-000000" / "report.json").write_text("{}", encoding="utf-8")

    assert _find_latest_report_dir(tmp_path) == tmp_path / "odf-audit-20261017-000000"


def test_find_latest_report_dir_with_no_reports_returns_none(tmp_path: Path) -> None:
    assert _find_latest_report_dir(tmp_path) is None


def test_build_summary_rows_reports_orphan_counts(tmp_path: Path) -> None:
    rows = {row["metric"]: row["value"] for row in _build_summary_rows(sample_report(tmp_path))}

    assert rows["Cluster health"] == "HEALTH_OK"
    assert rows["RBD high-confidence orphans"] == "1"
    assert rows["RGW high-confidence orphans"] == "1"
    assert rows["Suspected test pools"] == "1"
    assert rows["Raw capacity"] == "10.00 TiB"


def test_build_tier_rows_for_block_orphans_includes_verify_command(tmp_path: Path) -> None:
    rows = _build_tier_rows(sample_report(tmp_path), _TIER_RBD_HIGH)

    assert rows == [
        {
            "image": f"{POOL}/csi-vol-orphan",
            "size": "5.00 GiB",
            "watchers": "0",
            "bound": "no",
            "verify": f"oc rsh -n openshift-storage rook-ceph-tools-abc rbd status {POOL}/csi-vol-orphan",
        }
    ]


def test_build_tier_rows_for_review_images_shows_watchers(tmp_path: Path) -> None:
    rows = _build_tier_rows(sample_report(tmp_path), _TIER_RBD_REVIEW)

    assert [(row["image"], row["watchers"]) for row in rows] == [(f"{POOL}/csi-vol-watched", "1")]


def test_build_tier_rows_for_buckets_lists_owner_and_objects(tmp_path: Path) -> None:
    report = sample_report(tmp_path)

    high = _build_tier_rows(report, _TIER_RGW_HIGH)
    review = _build_tier_rows(report, _TIER_RGW_REVIEW)

    assert [(row["bucket"], row["owner"], row["objects"]) for row in high] == [("stray-bucket", "legacy", "16")]
    assert high[0]["verify"].endswith("radosgw-admin bucket stats --bucket=stray-bucket")
    assert [row["bucket"] for row in review] == ["loki-chunks"]


def test_build_tier_rows_handles_every_tier_label(tmp_path: Path) -> None:
    report = sample_report(tmp_path)

    for tier_label in _TIER_LABELS:
        assert isinstance(_build_tier_rows(report, tier_label), list)


def test_build_tier_rows_with_unknown_label_raises_value_error() -> None:
    with pytest.raises(ValueError, match="Unknown tier label"):
        _build_tier_rows({}, "Everything")


def test_build_pool_rows_flags_suspected_test_pools(tmp_path: Path) -> None:
    rows = _build_pool_rows(sample_report(tmp_path))

    assert [(row["pool"], row["suspected_test_pool"]) for row in rows] == [(POOL, "no"), ("fio-perf", "yes")]
    assert rows[0]["used"] == "3.00 GiB"


def test_build_failure_rows_with_failures_lists_sections() -> None:
    report = {"failures": [{"builder": "rgw", "error": "secrets forbidden"}]}

    assert _build_failure_rows(report) == [{"section": "rgw", "error": "secrets forbidden"}]
    assert _build_failure_rows({"failures": None}) == []


def test_build_sighting_rows_formats_sizes() -> None:
    rows = _build_sighting_rows(
        [{"kind": "rbd", "resource_key": f"{POOL}/csi-vol-orphan", "size_bytes": 1024, "seen_at": "2026-10-18"}]
    )

    assert rows == [
        {"kind": "rbd", "resource": f"{POOL}/csi-vol-orphan", "size": "1.00 KiB", "seen_at": "2026-10-18"}
    ]


def test_build_tier_rows_quotes_names_in_verify_commands() -> None:
    report = {
        "data_sources": {"storage_namespace": "odf", "tools_pod": "tools"},
        "orphans": {
            "rbd": {
                "high_confidence_orphans": [
                    {"pool": "rbdpool", "image": "img;touch pwned", "size_bytes": 1, "watcher_count": 0}
                ]
            },
            "rgw": {"review": [{"name": "logs $(id)", "owner": "loki", "size_bytes": 1, "objects": 1}]},
        },
    }

    rbd_rows = _build_tier_rows(report, _TIER_RBD_HIGH)
    rgw_rows = _build_tier_rows(report, _TIER_RGW_REVIEW)

    assert rbd_rows[0]["verify"] == "oc rsh -n odf tools rbd status 'rbdpool/img;touch pwned'"
    assert rgw_rows[0]["verify"] == "oc rsh -n odf tools radosgw-admin bucket stats '--bucket=logs $(id)'"


def test_build_summary_rows_includes_history_counts(tmp_path: Path) -> None:
    report = sample_report(tmp_path)
    report["reconciliation"] = {"confirmed": [{}, {}], "new": [], "runs_recorded": 4}

    rows = {row["metric"]: row["value"] for row in _build_summary_rows(report)}

    assert rows["Audit runs with orphans recorded"] == "4"
    assert rows["Confirmed on re-run"] == "2"
