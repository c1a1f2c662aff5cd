from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class OrphanTier(str, Enum):
    HIGH_CONFIDENCE = "high-confidence-orphan"
    REVIEW = "medium-confidence-review"
    TEST_PATTERN = "test-pattern-flag"
    BOUND = "bound"


@dataclass(frozen=True)
class BlockImageRecord:
    """One RBD image.

    Fields that could not be resolved keep their defaults: ``size_bytes`` 0,
    ``watcher_count`` 0 with ``watchers_known`` False. Classification treats an
    unknown watcher state as "possibly in use".
    """

    pool: str
    image: str
    size_bytes: int = 0
    watcher_count: int = 0
    watchers: tuple[str, ...] = ()
    watchers_known: bool = False
    has_binding: bool = False
    looks_like_test_artifact: bool = False

    @property
    def key(self) -> str:
        return f"{self.pool}/{self.image}"


@dataclass(frozen=True)
class BucketRecord:
    name: str
    owner: str = "unknown"
    size_bytes: int = 0
    objects: int = 0
    stats_known: bool = False
    has_claim_binding: bool = False
    has_secret_binding: bool = False
    loki: bool = False
    logging: bool = False

    @property
    def key(self) -> str:
        return self.name

    @property
    def has_binding(self) -> bool:
        return self.has_claim_binding or self.has_secret_binding

    @property
    def logging_related(self) -> bool:
        return self.loki or self.logging


@dataclass(frozen=True)
class SubvolumeRecord:
    filesystem: str
    group: str
    name: str
    bytes_quota: int = 0

    @property
    def key(self) -> str:
        return f"{self.filesystem}/{self.group}/{self.name}"


@dataclass(frozen=True)
class PoolUsageEntry:
    name: str
    used_bytes: int = 0
    stored_bytes: int = 0
    suspected_test_pool: bool = False


@dataclass(frozen=True)
class BindingMap:
    """Kubernetes-side references to storage objects, built once per run."""

    volume_handles: tuple[str, ...] = ()
    image_refs: frozenset[str] = frozenset()
    subvolume_refs: frozenset[str] = frozenset()
    claim_buckets: frozenset[str] = frozenset()
    secret_buckets: frozenset[str] = frozenset()
    bucket_source_error: str | None = None


@dataclass(frozen=True)
class KubernetesCounts:
    pv_total: int = 0
    pvc_total: int = 0
    obc_total: int = 0
    ob_total: int = 0
    rbd_pvs: int = 0
    cephfs_pvs: int = 0


@dataclass(frozen=True)
class ClusterCapacity:
    raw_total_bytes: int = 0
    raw_used_bytes: int = 0
    stored_bytes: int = 0

    @property
    def efficiency_ratio(self) -> float:
        if self.raw_used_bytes <= 0:
            return 0.0
        return round(self.stored_bytes / self.raw_used_bytes, 3)


@dataclass(frozen=True)
class ClusterStatus:
    health: str = "unknown"
    osds: int = 0
    mons: int = 0
    capacity: ClusterCapacity = field(default_factory=ClusterCapacity)


@dataclass(frozen=True)
class BuilderFailure:
    builder: str
    error: str


@dataclass(frozen=True)
class ClaimRecord:
    """A PersistentVolumeClaim with a storage request."""

    namespace: str
    name: str
    requested: str = ""
    requested_bytes: int = 0
    volume_name: str = "pending"

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class FilesystemUsage:
    name: str
    total_bytes: int = 0
    total_files: int = 0
