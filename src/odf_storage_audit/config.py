from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any
import os

import yaml


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class ConfigError(RuntimeError):
    """Raised when the audit configuration cannot be used."""


@dataclass(frozen=True)
class AuditConfig:
    output_dir: Path | None = Path(os.environ["ODF_AUDIT_DIR"]) if os.getenv("ODF_AUDIT_DIR") else None
    storage_namespace: str = os.getenv("ODF_AUDIT_STORAGE_NAMESPACE", "openshift-storage")
    tools_pod_selector: str = os.getenv("ODF_AUDIT_TOOLS_SELECTOR", "app=rook-ceph-tools")
    monitoring_namespace: str = os.getenv("ODF_AUDIT_MONITORING_NAMESPACE", "openshift-monitoring")
    metrics_route_name: str = os.getenv("ODF_AUDIT_METRICS_ROUTE", "thanos-querier")
    metrics_service_name: str = os.getenv("ODF_AUDIT_METRICS_SERVICE", "prometheus-k8s")
    metrics_service_port: int = int(os.getenv("ODF_AUDIT_METRICS_SERVICE_PORT", "9091"))
    prometheus_endpoint: str | None = os.getenv("PROMETHEUS_ENDPOINT") or None
    prometheus_token: str | None = os.getenv("PROMETHEUS_TOKEN") or None
    verify_tls: bool = _env_flag("ODF_AUDIT_VERIFY_TLS", "false")
    query_retries: int = int(os.getenv("ODF_AUDIT_QUERY_RETRIES", "3"))
    query_backoff_seconds: float = float(os.getenv("ODF_AUDIT_QUERY_BACKOFF_SECONDS", "2"))
    trend_window_hours: int = int(os.getenv("ODF_AUDIT_TREND_HOURS", "24"))
    rbd_driver: str = os.getenv("ODF_AUDIT_RBD_DRIVER", "openshift-storage.rbd.csi.ceph.com")
    cephfs_driver: str = os.getenv("ODF_AUDIT_CEPHFS_DRIVER", "openshift-storage.cephfs.csi.ceph.com")
    bucket_provisioner_label: str = os.getenv(
        "ODF_AUDIT_BUCKET_PROVISIONER_LABEL",
        "bucket-provisioner=openshift-storage.ceph.rook.io",
    )
    history_db_path: Path = Path(os.getenv("ODF_AUDIT_HISTORY_DB", "./data/audit-history.db"))
    reconcile_days: int = int(os.getenv("ODF_AUDIT_RECONCILE_DAYS", "7"))


_PATH_FIELDS = {"output_dir", "history_db_path"}
_INT_FIELDS = {"metrics_service_port", "query_retries", "trend_window_hours", "reconcile_days"}
_FLOAT_FIELDS = {"query_backoff_seconds"}
_BOOL_FIELDS = {"verify_tls"}
_OPTIONAL_FIELDS = {"output_dir", "prometheus_endpoint", "prometheus_token"}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def load_config(path: str | Path | None = None, *, base: AuditConfig | None = None) -> AuditConfig:
    config = base or AuditConfig()
    if path is None:
        return _validate(config)

    config_path = Path(path).expanduser()
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except OSError as error:
        raise ConfigError(f"Unable to read config file {config_path}: {error}") from error
    except yaml.YAMLError as error:
        raise ConfigError(f"Config file {config_path} must be valid YAML: {error.__class__.__name__}.") from error

    if raw is None:
        return _validate(config)
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must be a YAML mapping.")

    known = {item.name: item for item in fields(AuditConfig)}
    unknown = sorted(key for key in raw if key not in known)
    if unknown:
        raise ConfigError(f"Config file {config_path} has unknown key(s): {', '.join(unknown)}.")

    overrides = {key: _coerce(key, value, config_path) for key, value in raw.items()}
    return _validate(replace(config, **overrides))


def _coerce(key: str, value: Any, config_path: Path) -> Any:
    if value is None:
        if key in _OPTIONAL_FIELDS:
            return None
        raise ConfigError(f"Config file {config_path}: '{key}' must not be empty.")

    if key in _PATH_FIELDS:
        return Path(str(value)).expanduser()
    if key in _BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES | _FALSE_VALUES:
            return text in _TRUE_VALUES
        raise ConfigError(f"Config file {config_path}: '{key}' must be true or false, got {value!r}.")
    if key in _INT_FIELDS or key in _FLOAT_FIELDS:
        if isinstance(value, bool):
            raise ConfigError(f"Config file {config_path}: '{key}' must be a number, got {value!r}.")
        try:
            return int(value) if key in _INT_FIELDS else float(value)
        except (TypeError, ValueError) as error:
            raise ConfigError(f"Config file {config_path}: '{key}' must be a number, got {value!r}.") from error
    if not isinstance(value, str):
        raise ConfigError(f"Config file {config_path}: '{key}' must be a string, got {value!r}.")
    return value


def _validate(config: AuditConfig) -> AuditConfig:
    if config.query_retries <= 0:
        raise ConfigError("query_retries must be positive")
    if config.query_backoff_seconds < 0:
        raise ConfigError("query_backoff_seconds must be >= 0")
    if config.trend_window_hours < 0:
        raise ConfigError("trend_window_hours must be >= 0")
    if "=" not in config.bucket_provisioner_label:
        raise ConfigError("bucket_provisioner_label must look like key=value")
    return config


def default_output_dir(now: datetime) -> Path:
    return Path(f"/tmp/odf-audit-{now.strftime('%Y%m%d-%H%M%S')}")


def resolve_output_dir(config: AuditConfig, now: datetime) -> Path:
    return config.output_dir or default_output_dir(now)


def ensure_directories(config: AuditConfig, output_dir: Path) -> None:
    (output_dir / "data").mkdir(parents=True, exist_ok=True)
    config.history_db_path.parent.mkdir(parents=True, exist_ok=True)
