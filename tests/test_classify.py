from __future__ import annotations

import json

from odf_storage_audit.classify import build_orphan_report, classify_bucket, classify_image
from odf_storage_audit.models import BlockImageRecord, BucketRecord, OrphanTier, PoolUsageEntry


def _image(
    *,
    image: str = "csi-vol-1",
    pool: str = "ocs-storagecluster-cephblockpool",
    size_bytes: int = 1024,
    watcher_count: int = 0,
    watchers_known: bool = True,
    has_binding: bool = False,
    looks_like_test_artifact: bool = False,
) -> BlockImageRecord:
    return BlockImageRecord(
        pool=pool,
        image=image,
        size_bytes=size_bytes,
        watcher_count=watcher_count,
        watchers=tuple(f"client.{index}" for index in range(watcher_count)),
        watchers_known=watchers_known,
        has_binding=has_binding,
        looks_like_test_artifact=looks_like_test_artifact,
    )


def _bucket(
    *,
    name: str = "app-bucket",
    size_bytes: int = 2048,
    claim: bool = False,
    secret: bool = False,
    loki: bool = False,
    logging: bool = False,
) -> BucketRecord:
    return BucketRecord(
        name=name,
        owner="obc-user",
        size_bytes=size_bytes,
        objects=3,
        stats_known=True,
        has_claim_binding=claim,
        has_secret_binding=secret,
        loki=loki,
        logging=logging,
    )


def test_classify_image_with_unbound_idle_image_returns_high_confidence() -> None:
    assert classify_image(_image()) == frozenset({OrphanTier.HIGH_CONFIDENCE})


def test_classify_image_with_unbound_watched_image_returns_review() -> None:
    assert classify_image(_image(watcher_count=1)) == frozenset({OrphanTier.REVIEW})


def test_classify_image_with_unknown_watchers_never_returns_high_confidence() -> None:
    tiers = classify_image(_image(watchers_known=False))

    assert OrphanTier.HIGH_CONFIDENCE not in tiers
    assert OrphanTier.REVIEW in tiers


def test_classify_image_with_unbound_empty_image_returns_bound_tier() -> None:
    assert classify_image(_image(size_bytes=0)) == frozenset({OrphanTier.BOUND})


def test_classify_image_with_bound_test_image_flags_test_pattern_and_binding() -> None:
    record = _image(image="fio-bench-1", has_binding=True, looks_like_test_artifact=True)

    tiers = classify_image(record)

    assert record.has_binding is True
    assert tiers == frozenset({OrphanTier.TEST_PATTERN, OrphanTier.BOUND})


def test_classify_image_with_unbound_test_image_keeps_both_tiers() -> None:
    tiers = classify_image(_image(image="tmp-disk", looks_like_test_artifact=True))

    assert tiers == frozenset({OrphanTier.HIGH_CONFIDENCE, OrphanTier.TEST_PATTERN})


def test_classify_image_with_any_binding_never_returns_high_confidence() -> None:
    for watcher_count in (0, 1, 3):
        for size_bytes in (0, 1, 10**12):
            for watchers_known in (True, False):
                record = _image(
                    has_binding=True,
                    watcher_count=watcher_count,
                    size_bytes=size_bytes,
                    watchers_known=watchers_known,
                )
                assert OrphanTier.HIGH_CONFIDENCE not in classify_image(record)


def test_classify_bucket_with_secret_only_binding_returns_bound() -> None:
    record = _bucket(secret=True)

    assert record.has_binding is True
    assert classify_bucket(record) == frozenset({OrphanTier.BOUND})


def test_classify_bucket_with_claim_only_binding_returns_bound() -> None:
    assert classify_bucket(_bucket(claim=True)) == frozenset({OrphanTier.BOUND})


def test_classify_bucket_with_unbound_logging_bucket_returns_review() -> None:
    assert classify_bucket(_bucket(name="loki-chunks", loki=True, logging=True)) == frozenset({OrphanTier.REVIEW})
    assert classify_bucket(_bucket(name="audit-logs", logging=True)) == frozenset({OrphanTier.REVIEW})


def test_classify_bucket_with_unbound_plain_bucket_returns_high_confidence() -> None:
    assert classify_bucket(_bucket()) == frozenset({OrphanTier.HIGH_CONFIDENCE})


def test_build_orphan_report_with_overlapping_evidence_counts_strict_tiers_only() -> None:
    images = [
        _image(image="csi-vol-idle"),
        _image(image="csi-vol-watched", watcher_count=2),
        _image(image="fio-unbound", looks_like_test_artifact=True),
        _image(image="fio-bound", has_binding=True, looks_like_test_artifact=True),
        _image(image="csi-vol-bound", has_binding=True),
    ]
    buckets = [
        _bucket(name="orphan-bucket"),
        _bucket(name="loki-bucket", loki=True, logging=True),
        _bucket(name="bound-bucket", claim=True),
        _bucket(name="empty-orphan", size_bytes=0),
    ]
    pools = [PoolUsageEntry(name="fio-pool", used_bytes=10, suspected_test_pool=True), PoolUsageEntry(name="prod")]

    report = build_orphan_report(images, buckets, pools)

    summary = report["summary"]
    assert summary["rbd_orphan_count"] == 3
    assert summary["rbd_high_confidence"] == 2
    assert summary["rbd_review"] == 1
    assert summary["rbd_test_pattern"] == 2
    assert summary["rgw_orphan_count"] == 3
    assert summary["rgw_high_confidence"] == 2
    assert summary["rgw_review"] == 1
    assert summary["suspected_pool_count"] == 1
    assert summary["reclaimable_bytes"] == 1024 * 2 + 2048
    assert [row["image"] for row in report["rbd"]["high_confidence_orphans"]] == ["csi-vol-idle", "fio-unbound"]
    assert [row["name"] for row in report["rgw"]["empty_no_obc"]] == ["empty-orphan"]
    assert [row["name"] for row in report["suspected_pools"]] == ["fio-pool"]


def test_build_orphan_report_with_shuffled_input_is_byte_identical() -> None:
    images = [_image(image=f"csi-vol-{index}", watcher_count=index % 2) for index in range(6)]
    buckets = [_bucket(name=f"bucket-{index}", claim=index % 3 == 0) for index in range(6)]

    first = build_orphan_report(images, buckets)
    second = build_orphan_report(list(reversed(images)), list(reversed(buckets)))

    assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)


def test_build_orphan_report_high_confidence_rows_never_have_bindings() -> None:
    images = [
        _image(image="a", has_binding=True),
        _image(image="b"),
        _image(image="c", has_binding=True, watcher_count=0),
    ]
    buckets = [_bucket(name="x", claim=True), _bucket(name="y", secret=True), _bucket(name="z")]

    report = build_orphan_report(images, buckets)

    assert all(not row["has_pv"] for row in report["rbd"]["high_confidence_orphans"])
    assert all(not row["has_obc"] for row in report["rgw"]["high_confidence_orphans"])
