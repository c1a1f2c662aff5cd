from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import Mock

import pytest
import requests
from kubernetes.client import ApiException

import odf_storage_audit.metrics as metrics_module
from fakes import audit_config, clients
from odf_storage_audit.metrics import (
    MetricsAuthenticationError,
    MetricsClient,
    MetricsDiscoveryError,
    MetricsEndpoint,
    MetricsQueryError,
    TimeSeriesResult,
    TimeSeriesSample,
    discover_metrics_endpoint,
    extract_scalar,
    reproduction_command,
)

ENDPOINT = MetricsEndpoint(url="https://thanos.example", token="secret-token", source="route")


def _response(*, status_code: int = 200, payload: Any = None, text: str | None = None) -> SimpleNamespace:
    def _json() -> Any:
        if payload is None:
            raise ValueError("no json")
        return payload

    return SimpleNamespace(status_code=status_code, text=text if text is not None else str(payload), json=_json)


def _success(result: list[dict[str, Any]], result_type: str = "vector") -> SimpleNamespace:
    return _response(payload={"status": "success", "data": {"resultType": result_type, "result": result}})


def _client(session: Mock, sleep: Mock | None = None, **config_overrides: Any) -> MetricsClient:
    return MetricsClient(
        config=audit_config(**config_overrides),
        endpoint=ENDPOINT,
        session=session,
        sleep=sleep or Mock(),
    )


def _route_not_found() -> ApiException:
    return ApiException(status=404, reason="Not Found")


def test_discover_metrics_endpoint_with_configured_endpoint_skips_discovery() -> None:
    kube = clients()

    endpoint = discover_metrics_endpoint(kube, audit_config(prometheus_endpoint="http://prom:9090/"))

    assert endpoint == MetricsEndpoint(url="http://prom:9090", token="kube-token", source="configured")
    kube.custom_objects_api.get_namespaced_custom_object.assert_not_called()


def test_discover_metrics_endpoint_with_route_uses_https_host_and_kube_token() -> None:
    kube = clients()
    kube.custom_objects_api.get_namespaced_custom_object.return_value = {"spec": {"host": "thanos.apps.example"}}

    endpoint = discover_metrics_endpoint(kube, audit_config())

    assert endpoint.url == "https://thanos.apps.example"
    assert endpoint.token == "kube-token"
    assert endpoint.source == "route"


def test_discover_metrics_endpoint_with_route_and_no_token_raises_authentication_error(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    kube = clients()
    kube.api_client.configuration.api_key = {}
    kube.custom_objects_api.get_namespaced_custom_object.return_value = {"spec": {"host": "thanos.apps.example"}}
    monkeypatch.setattr(metrics_module, "SERVICEACCOUNT_TOKEN_PATH", tmp_path / "missing-token")

    with pytest.raises(MetricsAuthenticationError) as exc_info:
        discover_metrics_endpoint(kube, audit_config())

    assert "oc whoami -t" in str(exc_info.value)


def test_discover_metrics_endpoint_with_service_only_builds_cluster_url() -> None:
    kube = clients()
    kube.custom_objects_api.get_namespaced_custom_object.side_effect = _route_not_found()
    kube.core_api.read_namespaced_service.return_value = SimpleNamespace(metadata=SimpleNamespace(name="prometheus-k8s"))

    endpoint = discover_metrics_endpoint(kube, audit_config())

    assert endpoint.url == "https://prometheus-k8s.openshift-monitoring.svc:9091"
    assert endpoint.source == "service"


def test_discover_metrics_endpoint_without_route_or_service_raises_discovery_error() -> None:
    kube = clients()
    kube.custom_objects_api.get_namespaced_custom_object.side_effect = _route_not_found()
    kube.core_api.read_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(MetricsDiscoveryError) as exc_info:
        discover_metrics_endpoint(kube, audit_config())

    assert "oc get route,svc -n openshift-monitoring" in str(exc_info.value)


def test_metrics_client_endpoint_with_lazy_discovery_discovers_once() -> None:
    discover = Mock(return_value=ENDPOINT)
    client = MetricsClient(config=audit_config(), clients=clients(), session=Mock(), discover=discover)

    assert client.endpoint is ENDPOINT
    assert client.endpoint is ENDPOINT
    discover.assert_called_once()


def test_query_instant_with_vector_result_parses_samples() -> None:
    session = Mock()
    session.get.return_value = _success([{"metric": {"pool_id": "1"}, "value": [1700000000, "42"]}])

    result = _client(session).query_instant("ceph_pool_bytes_used")

    assert result.samples == (TimeSeriesSample(labels={"pool_id": "1"}, value=42.0),)
    _, kwargs = session.get.call_args
    assert kwargs["params"] == {"query": "ceph_pool_bytes_used"}
    assert kwargs["headers"]["Authorization"] == "Bearer secret-token"
    assert kwargs["verify"] is False


def test_query_instant_with_transient_failures_retries_with_fixed_backoff() -> None:
    session = Mock()
    session.get.side_effect = [
        requests.ConnectionError("connection reset"),
        _response(status_code=503, payload=None, text="unavailable"),
        _success([{"metric": {}, "value": [1, "7"]}]),
    ]
    sleep = Mock()

    result = _client(session, sleep=sleep).query_instant("sum(ceph_osd_stat_bytes)")

    assert extract_scalar(result) == 7.0
    assert session.get.call_count == 3
    assert sleep.call_args_list == [((2,),), ((2,),)]


def test_query_instant_with_exhausted_retries_raises_with_reproduction_command() -> None:
    session = Mock()
    session.get.return_value = _response(payload={"status": "error", "error": "bad query"})
    sleep = Mock()

    with pytest.raises(MetricsQueryError) as exc_info:
        _client(session, sleep=sleep).query_instant("sum(ceph_pool_stored)")

    message = str(exc_info.value)
    assert "after 3 attempts" in message
    assert "sum(ceph_pool_stored)" in message
    assert "https://thanos.example" in message
    assert "bad query" in message
    assert "curl -sk" in message
    assert session.get.call_count == 3
    assert sleep.call_count == 2


def test_query_instant_with_non_json_body_is_retried() -> None:
    session = Mock()
    session.get.side_effect = [
        _response(payload=None, text="<html>login</html>"),
        _success([], result_type="vector"),
    ]

    result = _client(session).query_instant("up")

    assert result.samples == ()
    assert session.get.call_count == 2


def test_query_range_with_matrix_result_keeps_values() -> None:
    session = Mock()
    session.get.return_value = _success(
        [{"metric": {}, "values": [[1, "10"], [2, "NaN"], [3, "30"]]}],
        result_type="matrix",
    )
    start = datetime(2026, 10, 17, tzinfo=timezone.utc)
    end = datetime(2026, 10, 18, tzinfo=timezone.utc)

    result = _client(session).query_range("sum(ceph_pool_stored)", start, end, "1h")

    assert result.result_type == "matrix"
    assert result.samples[0].values == ((1.0, 10.0), (3.0, 30.0))
    _, kwargs = session.get.call_args
    assert kwargs["params"]["step"] == "1h"
    assert kwargs["params"]["start"] == f"{start.timestamp():.0f}"


def test_query_range_with_failure_raises_without_retry() -> None:
    session = Mock()
    session.get.return_value = _response(status_code=500, payload=None, text="boom")
    sleep = Mock()
    start = datetime(2026, 10, 17, tzinfo=timezone.utc)

    with pytest.raises(MetricsQueryError):
        _client(session, sleep=sleep).query_range("sum(ceph_pool_stored)", start, start, "1h")

    assert session.get.call_count == 1
    sleep.assert_not_called()


def test_extract_scalar_with_label_filter_returns_matching_sample() -> None:
    result = TimeSeriesResult(
        status="success",
        samples=(
            TimeSeriesSample(labels={"pool_id": "1"}, value=1.0),
            TimeSeriesSample(labels={"pool_id": "2"}, value=2.0),
        ),
    )

    assert extract_scalar(result, {"pool_id": "2"}) == 2.0
    assert extract_scalar(result, {"pool_id": "9"}) == 0.0


def test_extract_scalar_with_malformed_input_returns_zero() -> None:
    assert extract_scalar(None) == 0.0
    assert extract_scalar(TimeSeriesResult(status="success")) == 0.0
    assert extract_scalar(SimpleNamespace(samples=None)) == 0.0


def test_reproduction_command_with_token_references_oc_whoami() -> None:
    command = reproduction_command(ENDPOINT, "/api/v1/query", {"query": "sum(x) by (y)"})

    assert command.startswith('curl -sk -H "Authorization: Bearer $(oc whoami -t)" -G')
    assert "'query=sum(x) by (y)'" in command
    assert "secret-token" not in command
