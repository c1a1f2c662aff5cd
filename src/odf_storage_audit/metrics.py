"""Prometheus/Thanos access for cluster capacity and pool usage figures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from pathlib import Path
import shlex
import time
from typing import Any, Callable, Mapping

import requests

from odf_storage_audit.config import AuditConfig
from odf_storage_audit.k8s import KubernetesClients, bearer_token, read_route, read_service

logger = logging.getLogger(__name__)

SERVICEACCOUNT_TOKEN_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30


class MetricsDiscoveryError(RuntimeError):
    """Raised when no metrics endpoint can be located."""


class MetricsAuthenticationError(RuntimeError):
    """Raised when a metrics route exists but no bearer token is available."""


class MetricsQueryError(RuntimeError):
    """Raised when a metrics query cannot be answered."""


@dataclass(frozen=True)
class MetricsEndpoint:
    url: str
    token: str | None
    source: str


@dataclass(frozen=True)
class TimeSeriesSample:
    labels: dict[str, str]
    value: float | None = None
    values: tuple[tuple[float, float], ...] = ()


@dataclass(frozen=True)
class TimeSeriesResult:
    status: str
    result_type: str = "vector"
    samples: tuple[TimeSeriesSample, ...] = field(default_factory=tuple)


def discover_metrics_endpoint(clients: KubernetesClients, config: AuditConfig) -> MetricsEndpoint:
    if config.prometheus_endpoint:
        token = config.prometheus_token or bearer_token(clients)
        return MetricsEndpoint(url=config.prometheus_endpoint.rstrip("/"), token=token, source="configured")

    namespace = config.monitoring_namespace
    route = read_route(clients, namespace=namespace, name=config.metrics_route_name)
    host = ((route or {}).get("spec") or {}).get("host")
    if host:
        token = config.prometheus_token or bearer_token(clients) or _service_account_token()
        if not token:
            raise MetricsAuthenticationError(
                f"Found metrics route '{namespace}/{config.metrics_route_name}' (https://{host}) but no bearer "
                "token is available. Queries without a token return empty results, so the audit stops here. "
                "Set PROMETHEUS_TOKEN or log in with a token-based kubeconfig, then verify with: oc whoami -t"
            )
        return MetricsEndpoint(url=f"https://{host}", token=token, source="route")

    service = read_service(clients, namespace=namespace, name=config.metrics_service_name)
    if service is not None:
        url = f"https://{config.metrics_service_name}.{namespace}.svc:{config.metrics_service_port}"
        token = config.prometheus_token or bearer_token(clients) or _service_account_token()
        return MetricsEndpoint(url=url, token=token, source="service")

    raise MetricsDiscoveryError(
        f"No metrics endpoint found: route '{namespace}/{config.metrics_route_name}' and service "
        f"'{namespace}/{config.metrics_service_name}' are both missing. Set PROMETHEUS_ENDPOINT or check with: "
        f"oc get route,svc -n {namespace}"
    )


class MetricsClient:
    """Query client bound to one audit run.

    The endpoint is discovered on first use and reused for every later query.
    """

    def __init__(
        self,
        *,
        config: AuditConfig,
        clients: KubernetesClients | None = None,
        endpoint: MetricsEndpoint | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        discover: Callable[[KubernetesClients, AuditConfig], MetricsEndpoint] = discover_metrics_endpoint,
    ) -> None:
        self.config = config
        self.clients = clients
        self.session = session or requests.Session()
        self._endpoint = endpoint
        self._sleep = sleep
        self._discover = discover

    @property
    def endpoint(self) -> MetricsEndpoint:
        if self._endpoint is None:
            if self.clients is None:
                raise MetricsDiscoveryError("No metrics endpoint configured and no Kubernetes clients to discover one.")
            self._endpoint = self._discover(self.clients, self.config)
            logger.info("Using metrics endpoint %s (%s)", self._endpoint.url, self._endpoint.source)
        return self._endpoint

    def query_instant(self, expr: str) -> TimeSeriesResult:
        endpoint = self.endpoint
        attempts = max(1, self.config.query_retries)
        last_body = ""
        for attempt in range(1, attempts + 1):
            try:
                payload, last_body = self._get(endpoint, "/api/v1/query", {"query": expr})
                return _parse_result(payload)
            except _RetryableQueryError as error:
                last_body = error.body or last_body
                logger.warning("Metrics query attempt %s/%s failed for '%s': %s", attempt, attempts, expr, error)
                if attempt < attempts:
                    self._sleep(self.config.query_backoff_seconds)

        raise MetricsQueryError(
            f"Metrics query failed after {attempts} attempts.\n"
            f"  query: {expr}\n"
            f"  endpoint: {endpoint.url}\n"
            f"  last response: {last_body[:500] or '(empty)'}\n"
            f"  reproduce: {reproduction_command(endpoint, '/api/v1/query', {'query': expr})}"
        )

    def query_range(self, expr: str, start: datetime, end: datetime, step: str) -> TimeSeriesResult:
        endpoint = self.endpoint
        params = {
            "query": expr,
            "start": f"{start.timestamp():.0f}",
            "end": f"{end.timestamp():.0f}",
            "step": step,
        }
        try:
            payload, _ = self._get(endpoint, "/api/v1/query_range", params)
        except _RetryableQueryError as error:
            raise MetricsQueryError(
                f"Metrics range query failed.\n"
                f"  query: {expr}\n"
                f"  endpoint: {endpoint.url}\n"
                f"  last response: {error.body[:500] or '(empty)'}\n"
                f"  reproduce: {reproduction_command(endpoint, '/api/v1/query_range', params)}"
            ) from error
        return _parse_result(payload)

    def _get(
        self,
        endpoint: MetricsEndpoint,
        path: str,
        params: Mapping[str, str],
    ) -> tuple[dict[str, Any], str]:
        headers = {"Accept": "application/json"}
        if endpoint.token:
            headers["Authorization"] = f"Bearer {endpoint.token}"
        try:
            response = self.session.get(
                f"{endpoint.url}{path}",
                params=dict(params),
                headers=headers,
                timeout=DEFAULT_REQUEST_TIMEOUT_SECONDS,
                verify=self.config.verify_tls,
            )
        except requests.RequestException as error:
            raise _RetryableQueryError(f"transport error: {error}") from error

        body = response.text or ""
        if response.status_code >= 400:
            raise _RetryableQueryError(f"HTTP {response.status_code}", body=body)
        try:
            payload = response.json()
        except ValueError as error:
            raise _RetryableQueryError("response is not JSON", body=body) from error
        if not isinstance(payload, dict) or payload.get("status") != "success":
            raise _RetryableQueryError("response status is not 'success'", body=body)
        return payload, body


class _RetryableQueryError(RuntimeError):
    def __init__(self, message: str, *, body: str = "") -> None:
        super().__init__(message)
        self.body = body


def extract_scalar(result: TimeSeriesResult | None, label_filter: Mapping[str, str] | None = None) -> float:
    """First sample value matching ``label_filter``; 0 when nothing usable exists."""
    if result is None:
        return 0.0
    try:
        for sample in result.samples:
            if label_filter and any(sample.labels.get(key) != value for key, value in label_filter.items()):
                continue
            if sample.value is not None:
                return sample.value
            if sample.values:
                return sample.values[-1][1]
    except (AttributeError, TypeError, IndexError):
        return 0.0
    return 0.0


def reproduction_command(endpoint: MetricsEndpoint, path: str, params: Mapping[str, str]) -> str:
    parts = ["curl", "-sk"]
    if endpoint.token:
        parts.append('-H "Authorization: Bearer $(oc whoami -t)"')
    parts.extend(["-G", shlex.quote(f"{endpoint.url}{path}")])
    for key, value in params.items():
        parts.extend(["--data-urlencode", shlex.quote(f"{key}={value}")])
    return " ".join(parts)


def _parse_result(payload: Mapping[str, Any]) -> TimeSeriesResult:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    result_type = str(data.get("resultType") or "vector")
    raw_result = data.get("result")
    samples: list[TimeSeriesSample] = []

    if result_type == "scalar" and isinstance(raw_result, list) and len(raw_result) == 2:
        value = _to_float(raw_result[1])
        if value is not None:
            samples.append(TimeSeriesSample(labels={}, value=value))
    elif isinstance(raw_result, list):
        for item in raw_result:
            if not isinstance(item, dict):
                continue
            labels = {str(key): str(value) for key, value in (item.get("metric") or {}).items()}
            if "value" in item:
                pair = item.get("value") or []
                value = _to_float(pair[1]) if len(pair) == 2 else None
                samples.append(TimeSeriesSample(labels=labels, value=value))
            elif "values" in item:
                values = tuple(
                    (float(pair[0]), parsed)
                    for pair in item.get("values") or []
                    if len(pair) == 2 and (parsed := _to_float(pair[1])) is not None
                )
                samples.append(TimeSeriesSample(labels=labels, values=values))

    return TimeSeriesResult(status=str(payload.get("status", "")), result_type=result_type, samples=tuple(samples))


def _to_float(value: Any) -> float | None:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed:
        return None
    return parsed


def _service_account_token() -> str | None:
    try:
        token = SERVICEACCOUNT_TOKEN_PATH.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return token or None
