from datetime import datetime, timezone
from pathlib import Path

from odf_storage_audit.history import AuditHistoryStore, orphan_sightings, reconcile

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _orphans() -> dict:
    return {
        "rbd": {
            "high_confidence_orphans": [
                {"pool": "rbd-pool", "image": "csi-vol-old", "size_bytes": 100},
                {"pool": "rbd-pool", "image": "csi-vol-new", "size_bytes": 50},
            ]
        },
        "rgw": {"high_confidence_orphans": [{"name": "stray-bucket", "size_bytes": 10}]},
    }


def test_orphan_sightings_with_both_kinds_returns_keys_and_sizes() -> None:
    assert orphan_sightings(_orphans()) == [
        ("rbd", "rbd-pool/csi-vol-old", 100),
        ("rbd", "rbd-pool/csi-vol-new", 50),
        ("rgw", "stray-bucket", 10),
    ]


def test_first_seen_map_tracks_earliest_sighting(tmp_path: Path) -> None:
    store = AuditHistoryStore(tmp_path / "history.db")
    store.initialize()

    store.record_run(seen_at="2026-10-01T00:00:00+00:00", sightings=[("rbd", "rbd-pool/csi-vol-old", 100)])
    store.record_run(seen_at="2026-10-10T00:00:00+00:00", sightings=[("rbd", "rbd-pool/csi-vol-old", 120)])

    first_seen = store.first_seen_map()

    assert first_seen[("rbd", "rbd-pool/csi-vol-old")] == "2026-10-01T00:00:00+00:00"
    assert store.count_runs() == 2


def test_record_run_with_no_sightings_writes_nothing(tmp_path: Path) -> None:
    store = AuditHistoryStore(tmp_path / "nested" / "history.db")
    store.initialize()

    assert store.record_run(seen_at="2026-10-01T00:00:00+00:00", sightings=[]) == 0
    assert store.count_runs() == 0
    assert store.first_seen_map() == {}


def test_get_recent_sightings_with_limit_returns_newest_first(tmp_path: Path) -> None:
    store = AuditHistoryStore(tmp_path / "history.db")
    store.initialize()
    store.record_run(seen_at="2026-10-01T00:00:00+00:00", sightings=[("rgw", "a", 1)])
    store.record_run(seen_at="2026-10-02T00:00:00+00:00", sightings=[("rgw", "b", 2)])

    rows = store.get_recent_sightings(limit=1)

    assert rows == [{"kind": "rgw", "resource_key": "b", "size_bytes": 2, "seen_at": "2026-10-02T00:00:00+00:00"}]
    assert store.get_recent_sightings(limit=0) == []


def test_reconcile_with_old_and_new_orphans_splits_confirmed() -> None:
    first_seen = {
        ("rbd", "rbd-pool/csi-vol-old"): "2026-10-01T00:00:00+00:00",
        ("rgw", "stray-bucket"): "2026-10-15T00:00:00+00:00",
    }

    result = reconcile(orphan_sightings(_orphans()), first_seen, now=NOW, min_age_days=7)

    assert result["min_age_days"] == 7
    assert [entry["key"] for entry in result["confirmed"]] == ["rbd-pool/csi-vol-old"]
    assert [entry["key"] for entry in result["new"]] == ["rbd-pool/csi-vol-new", "stray-bucket"]
    assert result["new"][0]["first_seen"] is None
