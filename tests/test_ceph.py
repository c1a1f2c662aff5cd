from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from kubernetes.client import ApiException

import odf_storage_audit.ceph as ceph_module
from odf_storage_audit.ceph import (
    CephCommandError,
    CephToolbox,
    CommandResult,
    ToolboxUnavailableError,
    find_tools_pod,
)


def _pod(name: str, phase: str) -> SimpleNamespace:
    return SimpleNamespace(metadata=SimpleNamespace(name=name), status=SimpleNamespace(phase=phase))


def _toolbox(executor: Mock) -> CephToolbox:
    return CephToolbox(core_api=None, namespace="openshift-storage", pod_name="tools", executor=executor)


def test_find_tools_pod_with_running_pod_returns_its_name() -> None:
    core_api = Mock()
    core_api.list_namespaced_pod.return_value = SimpleNamespace(
        items=[_pod("rook-ceph-tools-old", "Pending"), _pod("rook-ceph-tools-new", "Running")]
    )

    name = find_tools_pod(core_api, namespace="openshift-storage", label_selector="app=rook-ceph-tools")

    assert name == "rook-ceph-tools-new"
    core_api.list_namespaced_pod.assert_called_once_with(
        namespace="openshift-storage",
        label_selector="app=rook-ceph-tools",
    )


def test_find_tools_pod_without_running_pod_raises_with_enable_hint() -> None:
    core_api = Mock()
    core_api.list_namespaced_pod.return_value = SimpleNamespace(items=[_pod("rook-ceph-tools-x", "CrashLoopBackOff")])

    with pytest.raises(ToolboxUnavailableError) as exc_info:
        find_tools_pod(core_api, namespace="openshift-storage", label_selector="app=rook-ceph-tools")

    message = str(exc_info.value)
    assert "enableCephTools" in message
    assert "oc get pod -n openshift-storage -l app=rook-ceph-tools" in message


def test_find_tools_pod_with_api_error_raises_toolbox_unavailable() -> None:
    core_api = Mock()
    core_api.list_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(ToolboxUnavailableError) as exc_info:
        find_tools_pod(core_api, namespace="openshift-storage", label_selector="app=rook-ceph-tools")

    assert "API status 403" in str(exc_info.value)


def test_run_json_with_valid_output_appends_json_format() -> None:
    executor = Mock(return_value=CommandResult(returncode=0, stdout=json.dumps(["pool-a", "pool-b"])))

    assert _toolbox(executor).pool_names() == ["pool-a", "pool-b"]
    executor.assert_called_once_with(["ceph", "osd", "pool", "ls", "--format", "json"])


def test_run_json_with_nonzero_exit_raises_command_error_with_stderr() -> None:
    executor = Mock(return_value=CommandResult(returncode=2, stdout="", stderr="error opening pool 'x'"))

    with pytest.raises(CephCommandError) as exc_info:
        _toolbox(executor).rbd_list("x")

    assert "rbd ls x --format json" in str(exc_info.value)
    assert "error opening pool 'x'" in str(exc_info.value)


def test_run_json_with_non_json_output_raises_command_error() -> None:
    executor = Mock(return_value=CommandResult(returncode=0, stdout="not json"))

    with pytest.raises(CephCommandError) as exc_info:
        _toolbox(executor).status()

    assert "output is not JSON" in str(exc_info.value)


def test_run_json_with_transport_exception_wraps_in_command_error() -> None:
    executor = Mock(side_effect=OSError("websocket closed"))

    with pytest.raises(CephCommandError) as exc_info:
        _toolbox(executor).bucket_list()

    assert "websocket closed" in str(exc_info.value)


def test_toolbox_methods_with_unexpected_shapes_return_empty_defaults() -> None:
    executor = Mock(return_value=CommandResult(returncode=0, stdout=json.dumps({"unexpected": True})))
    toolbox = _toolbox(executor)

    assert toolbox.bucket_list() == []
    assert toolbox.fs_list() == []

    executor.return_value = CommandResult(returncode=0, stdout=json.dumps(["a", {"name": "csi"}]))
    assert toolbox.subvolume_groups("ocs-fs") == [{"name": "csi"}]
    assert toolbox.rbd_info("pool", "img") == {}


def test_bucket_stats_with_name_passes_bucket_flag() -> None:
    executor = Mock(return_value=CommandResult(returncode=0, stdout=json.dumps({"owner": "u"})))

    assert _toolbox(executor).bucket_stats("my-bucket") == {"owner": "u"}
    executor.assert_called_once_with(
        ["radosgw-admin", "bucket", "stats", "--bucket=my-bucket", "--format", "json"]
    )


def test_exec_in_pod_with_stream_collects_output_and_closes(monkeypatch: pytest.MonkeyPatch) -> None:
    response = Mock()
    response.read_stdout.return_value = '{"health": {"status": "HEALTH_OK"}}'
    response.read_stderr.return_value = ""
    response.returncode = 0
    stream = Mock(return_value=response)
    monkeypatch.setattr(ceph_module, "stream", stream)
    core_api = Mock()

    toolbox = CephToolbox(core_api=core_api, namespace="openshift-storage", pod_name="tools")

    assert toolbox.status() == {"health": {"status": "HEALTH_OK"}}
    args, kwargs = stream.call_args
    assert args == (core_api.connect_get_namespaced_pod_exec, "tools", "openshift-storage")
    assert kwargs["command"] == ["ceph", "status", "--format", "json"]
    assert kwargs["_preload_content"] is False
    response.run_forever.assert_called_once()
    response.close.assert_called_once()
