"""Orphan classification.

Everything here is a pure function of the inventory records: no I/O, no
clock, no logging. Running it twice over the same records yields identical
output, which is what makes the "re-run after a week and compare" workflow
meaningful.
"""

from __future__ import annotations

from typing import Any, Iterable

from odf_storage_audit.models import BlockImageRecord, BucketRecord, OrphanTier, PoolUsageEntry
from odf_storage_audit.normalize import human_readable


def classify_image(record: BlockImageRecord) -> frozenset[OrphanTier]:
    tiers: set[OrphanTier] = set()
    if not record.has_binding:
        if record.watchers_known and record.watcher_count == 0 and record.size_bytes > 0:
            tiers.add(OrphanTier.HIGH_CONFIDENCE)
        elif record.watcher_count > 0 or not record.watchers_known:
            tiers.add(OrphanTier.REVIEW)
    if record.looks_like_test_artifact:
        tiers.add(OrphanTier.TEST_PATTERN)
    if not tiers & {OrphanTier.HIGH_CONFIDENCE, OrphanTier.REVIEW}:
        tiers.add(OrphanTier.BOUND)
    return frozenset(tiers)


def classify_bucket(record: BucketRecord) -> frozenset[OrphanTier]:
    if record.has_binding:
        return frozenset({OrphanTier.BOUND})
    if record.logging_related:
        return frozenset({OrphanTier.REVIEW})
    return frozenset({OrphanTier.HIGH_CONFIDENCE})


def image_row(record: BlockImageRecord) -> dict[str, Any]:
    return {
        "pool": record.pool,
        "image": record.image,
        "size_bytes": record.size_bytes,
        "size_human": human_readable(record.size_bytes),
        "watchers": list(record.watchers),
        "watcher_count": record.watcher_count,
        "watchers_known": record.watchers_known,
        "has_pv": record.has_binding,
        "test_pattern": record.looks_like_test_artifact,
        "tiers": sorted(tier.value for tier in classify_image(record)),
    }


def bucket_row(record: BucketRecord) -> dict[str, Any]:
    return {
        "name": record.name,
        "owner": record.owner,
        "size_bytes": record.size_bytes,
        "size_human": human_readable(record.size_bytes),
        "objects": record.objects,
        "stats_known": record.stats_known,
        "has_obc": record.has_binding,
        "has_obc_spec": record.has_claim_binding,
        "has_obc_secret": record.has_secret_binding,
        "tags": {"loki": record.loki, "logging": record.logging},
        "tiers": sorted(tier.value for tier in classify_bucket(record)),
    }


def pool_row(entry: PoolUsageEntry) -> dict[str, Any]:
    return {
        "name": entry.name,
        "used_bytes": entry.used_bytes,
        "used_human": human_readable(entry.used_bytes),
        "stored_bytes": entry.stored_bytes,
        "suspected_test_pool": entry.suspected_test_pool,
    }


def build_orphan_report(
    images: Iterable[BlockImageRecord],
    buckets: Iterable[BucketRecord],
    pools: Iterable[PoolUsageEntry] = (),
) -> dict[str, Any]:
    """Evidence lists per category plus strict-tier summary counts.

    A record may appear in several evidence lists. The summary counts only
    use the high-confidence and review tiers so no record is counted twice
    for the same risk level.
    """
    image_list = sorted(images, key=lambda record: record.key)
    bucket_list = sorted(buckets, key=lambda record: record.key)
    pool_list = sorted(pools, key=lambda entry: entry.name)

    image_tiers = [(record, classify_image(record)) for record in image_list]
    bucket_tiers = [(record, classify_bucket(record)) for record in bucket_list]

    rbd_high = [image_row(record) for record, tiers in image_tiers if OrphanTier.HIGH_CONFIDENCE in tiers]
    rbd_review = [image_row(record) for record, tiers in image_tiers if OrphanTier.REVIEW in tiers]
    rbd_test = [image_row(record) for record, tiers in image_tiers if OrphanTier.TEST_PATTERN in tiers]
    rgw_high = [bucket_row(record) for record, tiers in bucket_tiers if OrphanTier.HIGH_CONFIDENCE in tiers]
    rgw_review = [bucket_row(record) for record, tiers in bucket_tiers if OrphanTier.REVIEW in tiers]
    suspected_pools = [pool_row(entry) for entry in pool_list if entry.suspected_test_pool]

    rbd_no_binding = [image_row(record) for record in image_list if not record.has_binding]
    rgw_no_binding = [bucket_row(record) for record in bucket_list if not record.has_binding]

    return {
        "rbd": {
            "no_pv": rbd_no_binding,
            "no_watchers": [
                image_row(record)
                for record in image_list
                if record.watchers_known and record.watcher_count == 0
            ],
            "test_pattern": rbd_test,
            "high_confidence_orphans": rbd_high,
            "review": rbd_review,
        },
        "rgw": {
            "no_obc": rgw_no_binding,
            "no_obc_no_secret": [
                bucket_row(record)
                for record in bucket_list
                if not record.has_claim_binding and not record.has_secret_binding
            ],
            "loki_related": [bucket_row(record) for record in bucket_list if record.loki],
            "logging_related": [bucket_row(record) for record in bucket_list if record.logging_related],
            "empty_no_obc": [
                bucket_row(record) for record in bucket_list if not record.has_binding and record.size_bytes == 0
            ],
            "high_confidence_orphans": rgw_high,
            "review": rgw_review,
        },
        "suspected_pools": suspected_pools,
        "summary": {
            "rbd_orphan_count": len(rbd_no_binding),
            "rbd_high_confidence": len(rbd_high),
            "rbd_review": len(rbd_review),
            "rbd_test_pattern": len(rbd_test),
            "rgw_orphan_count": len(rgw_no_binding),
            "rgw_high_confidence": len(rgw_high),
            "rgw_review": len(rgw_review),
            "suspected_pool_count": len(suspected_pools),
            "reclaimable_bytes": sum(row["size_bytes"] for row in rbd_high) + sum(row["size_bytes"] for row in rgw_high),
        },
    }
