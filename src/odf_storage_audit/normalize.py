"""Size, identifier and name normalization.

All text parsing of storage identifiers lives here so the builders and the
classification engine only ever see canonical byte counts and ``pool/image``
strings.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
import re
from typing import Any

BINARY_UNITS = ("B", "KiB", "MiB", "GiB", "TiB", "PiB")

_KIB_FIELD_PATTERN = re.compile(r"(^|_)kb(_|$)")
_QUANTITY_PATTERN = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*([A-Za-z]*)\s*$")
_QUANTITY_MULTIPLIERS = {
    "": 1,
    "k": 1000,
    "K": 1000,
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
    "P": 1000**5,
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "Pi": 1024**5,
    "B": 1,
    "KiB": 1024,
    "MiB": 1024**2,
    "GiB": 1024**3,
    "TiB": 1024**4,
    "PiB": 1024**5,
}

_BLOCK_POOL_PATTERN = re.compile(r"rbd|block", re.IGNORECASE)
_TEST_ARTIFACT_PATTERN = re.compile(r"test|bench|benchmark|fio|temp|tmp|demo", re.IGNORECASE)
_TEST_POOL_PATTERN = re.compile(r"test|bench|fio|perf|tmp|temp|demo", re.IGNORECASE)
_LOKI_BUCKET_PATTERN = re.compile(r"loki|logging", re.IGNORECASE)
_LOGGING_BUCKET_PATTERN = re.compile(r"log", re.IGNORECASE)


def to_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return 0


def is_kibibyte_field(field_hint: str | None) -> bool:
    return bool(field_hint) and bool(_KIB_FIELD_PATTERN.search(field_hint.lower()))


def normalize_bytes(raw_value: Any, field_hint: str | None, cluster_total_bytes: int) -> int:
    """Return a pool or bucket usage figure in bytes.

    Fields named in kibibytes (``kb_used``, ``size_kb_actual``) are scaled
    unconditionally. Anything else is assumed to be bytes unless it exceeds the
    cluster's raw capacity, in which case it can only be a kibibyte counter.
    This is a heuristic: a thin-provisioned pool whose usage really exceeds
    raw capacity would be scaled wrongly.
    """
    value = to_int(raw_value)
    if value <= 0:
        return 0
    if is_kibibyte_field(field_hint):
        return value * 1024
    if cluster_total_bytes > 0 and value > cluster_total_bytes:
        return value * 1024
    return value


def parse_volume_handle(handle: str) -> str:
    """Turn a CSI volume handle into ``pool/image``.

    The last two hyphen-delimited tokens are taken as pool and image name, so
    a pool or image whose own name contains a hyphen is split incorrectly.
    Handles with fewer than two tokens come back as their base name.
    """
    base_name = handle.strip().rsplit("/", 1)[-1]
    tokens = base_name.rsplit("-", 2)
    if len(tokens) < 2 or not tokens[-1] or not tokens[-2]:
        return base_name
    return f"{tokens[-2]}/{tokens[-1]}"


def human_readable(value: Any) -> str:
    size = to_int(value)
    if size <= 0:
        return "0 B"

    scaled = float(size)
    index = 0
    while scaled >= 1024 and index < len(BINARY_UNITS) - 1:
        scaled /= 1024
        index += 1
    return f"{scaled:.2f} {BINARY_UNITS[index]}"


def parse_quantity(text: Any) -> int:
    if text is None:
        return 0
    match = _QUANTITY_PATTERN.match(str(text))
    if not match:
        return 0
    number, suffix = match.groups()
    multiplier = _QUANTITY_MULTIPLIERS.get(suffix)
    if multiplier is None:
        return 0
    return int(Decimal(number) * multiplier)


def is_block_pool_name(name: str) -> bool:
    return bool(_BLOCK_POOL_PATTERN.search(name))


def is_test_pattern_name(name: str) -> bool:
    return bool(_TEST_ARTIFACT_PATTERN.search(name))


def is_suspected_test_pool_name(name: str) -> bool:
    return bool(_TEST_POOL_PATTERN.search(name))


def is_loki_bucket_name(name: str) -> bool:
    return bool(_LOKI_BUCKET_PATTERN.search(name))


def is_logging_bucket_name(name: str) -> bool:
    return bool(_LOGGING_BUCKET_PATTERN.search(name))
