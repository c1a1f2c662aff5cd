from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
import sqlite3
from typing import Any, Iterable


class AuditHistoryStore:
    """Remembers which resources were high-confidence orphans in earlier runs."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def initialize(self) -> None:
        with sqlite3.connect(self.db_path) as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS orphan_sightings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    resource_key TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    seen_at TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_orphan_sightings_lookup
                ON orphan_sightings(kind, resource_key, seen_at)
                """
            )
            connection.commit()

    def record_run(self, *, seen_at: str, sightings: Iterable[tuple[str, str, int]]) -> int:
        rows = [(kind, key, int(size_bytes), seen_at) for kind, key, size_bytes in sightings]
        if not rows:
            return 0
        with sqlite3.connect(self.db_path) as connection:
            connection.executemany(
                """
                INSERT INTO orphan_sightings (kind, resource_key, size_bytes, seen_at)
                VALUES (?, ?, ?, ?)
                """,
                rows,
            )
            connection.commit()
        return len(rows)

    def first_seen_map(self) -> dict[tuple[str, str], str]:
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute(
                """
                SELECT kind, resource_key, MIN(seen_at)
                FROM orphan_sightings
                GROUP BY kind, resource_key
                """
            )
            rows = cursor.fetchall()

        return {(kind, key): first_seen for kind, key, first_seen in rows}

    def get_recent_sightings(self, limit: int = 50) -> list[dict[str, Any]]:
        if limit <= 0:
            return []

        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute(
                """
                SELECT kind, resource_key, size_bytes, seen_at
                FROM orphan_sightings
                ORDER BY seen_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()

        return [
            {
                "kind": row[0],
                "resource_key": row[1],
                "size_bytes": row[2],
                "seen_at": row[3],
            }
            for row in rows
        ]

    def count_runs(self) -> int:
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute("SELECT COUNT(DISTINCT seen_at) FROM orphan_sightings")
            row = cursor.fetchone()

        return int(row[0]) if row else 0


def orphan_sightings(orphans: dict[str, Any]) -> list[tuple[str, str, int]]:
    sightings = [
        ("rbd", f"{row['pool']}/{row['image']}", row["size_bytes"])
        for row in orphans.get("rbd", {}).get("high_confidence_orphans", [])
    ]
    sightings.extend(
        ("rgw", row["name"], row["size_bytes"])
        for row in orphans.get("rgw", {}).get("high_confidence_orphans", [])
    )
    return sightings


def reconcile(
    sightings: list[tuple[str, str, int]],
    first_seen: dict[tuple[str, str], str],
    *,
    now: datetime,
    min_age_days: int,
) -> dict[str, Any]:
    """Split current high-confidence orphans into confirmed and new.

    An orphan is confirmed when an earlier run already saw it at least
    ``min_age_days`` before ``now``.
    """
    threshold = now - timedelta(days=min_age_days)
    confirmed: list[dict[str, Any]] = []
    new: list[dict[str, Any]] = []
    for kind, key, size_bytes in sorted(sightings):
        seen = first_seen.get((kind, key))
        entry = {"kind": kind, "key": key, "size_bytes": size_bytes, "first_seen": seen}
        if seen is not None and datetime.fromisoformat(seen) <= threshold:
            confirmed.append(entry)
        else:
            new.append(entry)
    return {"min_age_days": min_age_days, "confirmed": confirmed, "new": new}
