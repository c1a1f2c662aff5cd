from __future__ import annotations

import shlex
from typing import Any

CLEANUP_HEADER = """#!/bin/bash
# ODF Cleanup Commands
# Generated: {generated_at}
#
# WARNING: Review EVERY command before running it.
# Every destructive command below is commented out on purpose.
# Uncomment only after completing the verification steps in potential-orphans.txt.
#
# Recommended workflow:
#   1. Review potential-orphans.txt
#   2. Run the verification commands for each resource
#   3. Wait 7 days and re-run the audit
#   4. Uncomment and run the commands one at a time
#   5. Re-check cluster health after each deletion: {prefix} ceph -s

set -euo pipefail
"""


def toolbox_prefix(report: dict[str, Any]) -> str:
    sources = report.get("data_sources", {})
    namespace = sources.get("storage_namespace", "openshift-storage")
    pod = sources.get("tools_pod", "<rook-ceph-tools-pod>")
    return f"oc rsh -n {namespace} {pod}"


def rbd_command(prefix: str, action: str, pool: str, image: str) -> str:
    return f"{prefix} rbd {action} {shlex.quote(f'{pool}/{image}')}"


def bucket_command(prefix: str, action: str, bucket: str) -> str:
    return f"{prefix} radosgw-admin bucket {action} {shlex.quote(f'--bucket={bucket}')}"


def render_cleanup_script(report: dict[str, Any]) -> str:
    """Inert shell script listing the cleanup commands for high-confidence orphans.

    Verification and removal commands alike are prefixed with ``#``; the
    script does nothing until an operator edits it.
    """
    prefix = toolbox_prefix(report)
    orphans = report.get("orphans", {})
    lines = [CLEANUP_HEADER.format(generated_at=report.get("generated_at", "unknown"), prefix=prefix)]

    lines.append("# === HIGH CONFIDENCE: ORPHANED RBD IMAGES ===")
    images = orphans.get("rbd", {}).get("high_confidence_orphans", [])
    if not images:
        lines.append("# (none detected)")
    for row in images:
        lines.extend(
            [
                "",
                f"# {row['pool']}/{row['image']} ({row['size_human']}, watchers: {row['watcher_count']})",
                f"# verify: {rbd_command(prefix, 'status', row['pool'], row['image'])}",
                f"# {rbd_command(prefix, 'rm', row['pool'], row['image'])}",
            ]
        )

    lines.extend(["", "# === HIGH CONFIDENCE: ORPHANED RGW BUCKETS ==="])
    buckets = orphans.get("rgw", {}).get("high_confidence_orphans", [])
    if not buckets:
        lines.append("# (none detected)")
    for row in buckets:
        lines.extend(
            [
                "",
                f"# {row['name']} ({row['size_human']}, {row['objects']} objects, owner: {row['owner']})",
                f"# verify: {bucket_command(prefix, 'stats', row['name'])}",
                f"# {bucket_command(prefix, 'rm', row['name'])} --purge-objects",
            ]
        )

    lines.extend(
        [
            "",
            "# === NOT INCLUDED ===",
            "# Medium confidence and test-pattern resources need owner confirmation",
            "# and are listed in potential-orphans.txt only.",
            "",
            'echo "No commands executed. Edit this file to uncomment the reviewed commands."',
        ]
    )
    return "\n".join(lines) + "\n"
