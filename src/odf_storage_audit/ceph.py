from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import shlex
from typing import Any, Callable

from kubernetes import client
from kubernetes.client import ApiException
from kubernetes.stream import stream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str = ""


Executor = Callable[[list[str]], CommandResult]


class ToolboxUnavailableError(RuntimeError):
    """Raised when no running rook-ceph-tools pod can be found."""


class CephCommandError(RuntimeError):
    def __init__(self, *, command: list[str], reason: str) -> None:
        normalized_reason = reason.strip() or "unknown error"
        super().__init__(f"ceph command '{shlex.join(command)}' failed: {normalized_reason}")
        self.command = command


def find_tools_pod(core_api: client.CoreV1Api, *, namespace: str, label_selector: str) -> str:
    check = f"oc get pod -n {namespace} -l {label_selector}"
    try:
        pods = core_api.list_namespaced_pod(namespace=namespace, label_selector=label_selector).items
    except ApiException as error:
        status = error.status if error.status is not None else "unknown"
        raise ToolboxUnavailableError(
            f"Unable to list toolbox pods in namespace '{namespace}' (API status {status}). Run: {check}"
        ) from error

    for pod in pods or []:
        phase = pod.status.phase if pod.status and pod.status.phase else "Unknown"
        name = pod.metadata.name if pod.metadata else None
        if name and phase == "Running":
            return name

    raise ToolboxUnavailableError(
        f"rook-ceph-tools pod not found or not Running in namespace '{namespace}'. "
        f"Enable the toolbox (oc patch storagecluster ocs-storagecluster -n {namespace} --type json "
        "--patch '[{\"op\": \"replace\", \"path\": \"/spec/enableCephTools\", \"value\": true}]') "
        f"and verify with: {check}"
    )


class CephToolbox:
    """Runs Ceph admin commands inside the rook-ceph-tools pod.

    Every method asks for ``--format json`` output and returns the decoded
    document. Failures raise :class:`CephCommandError`; callers decide whether
    a failure means "absent" or "degrade this item".
    """

    def __init__(
        self,
        *,
        core_api: client.CoreV1Api | None,
        namespace: str,
        pod_name: str,
        executor: Executor | None = None,
    ) -> None:
        self.core_api = core_api
        self.namespace = namespace
        self.pod_name = pod_name
        self._executor = executor or self._exec_in_pod

    def run_json(self, args: list[str]) -> Any:
        command = [*args, "--format", "json"]
        try:
            result = self._executor(command)
        except CephCommandError:
            raise
        except Exception as error:  # pylint: disable=broad-except
            raise CephCommandError(command=command, reason=_error_message(error)) from error

        if result.returncode != 0:
            raise CephCommandError(
                command=command,
                reason=result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}",
            )
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as error:
            preview = result.stdout.strip()[:200]
            raise CephCommandError(command=command, reason=f"output is not JSON: {preview!r}") from error

    def status(self) -> dict[str, Any]:
        return _expect_mapping(self.run_json(["ceph", "status"]))

    def df_detail(self) -> dict[str, Any]:
        return _expect_mapping(self.run_json(["ceph", "df", "detail"]))

    def pool_names(self) -> list[str]:
        return [str(name) for name in _expect_list(self.run_json(["ceph", "osd", "pool", "ls"]))]

    def rbd_list(self, pool: str) -> list[str]:
        return [str(name) for name in _expect_list(self.run_json(["rbd", "ls", pool]))]

    def rbd_info(self, pool: str, image: str) -> dict[str, Any]:
        return _expect_mapping(self.run_json(["rbd", "info", f"{pool}/{image}"]))

    def rbd_status(self, pool: str, image: str) -> dict[str, Any]:
        return _expect_mapping(self.run_json(["rbd", "status", f"{pool}/{image}"]))

    def bucket_list(self) -> list[str]:
        return [str(name) for name in _expect_list(self.run_json(["radosgw-admin", "bucket", "list"]))]

    def bucket_stats(self, bucket: str) -> dict[str, Any]:
        return _expect_mapping(self.run_json(["radosgw-admin", "bucket", "stats", f"--bucket={bucket}"]))

    def fs_list(self) -> list[dict[str, Any]]:
        return [item for item in _expect_list(self.run_json(["ceph", "fs", "ls"])) if isinstance(item, dict)]

    def subvolume_groups(self, filesystem: str) -> list[dict[str, Any]]:
        payload = self.run_json(["ceph", "fs", "subvolumegroup", "ls", filesystem])
        return [item for item in _expect_list(payload) if isinstance(item, dict)]

    def subvolumes(self, filesystem: str, group: str) -> list[dict[str, Any]]:
        payload = self.run_json(["ceph", "fs", "subvolume", "ls", filesystem, group])
        return [item for item in _expect_list(payload) if isinstance(item, dict)]

    def subvolume_info(self, filesystem: str, name: str, group: str) -> dict[str, Any]:
        payload = self.run_json(["ceph", "fs", "subvolume", "info", filesystem, name, group])
        return _expect_mapping(payload)

    def _exec_in_pod(self, command: list[str]) -> CommandResult:
        if self.core_api is None:
            raise RuntimeError("no Kubernetes core API client configured for toolbox exec")

        logger.debug("exec in %s/%s: %s", self.namespace, self.pod_name, shlex.join(command))
        response = stream(
            self.core_api.connect_get_namespaced_pod_exec,
            self.pod_name,
            self.namespace,
            command=command,
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
            _preload_content=False,
        )
        try:
            response.run_forever()
            stdout = response.read_stdout() or ""
            stderr = response.read_stderr() or ""
            returncode = response.returncode or 0
        finally:
            response.close()
        return CommandResult(returncode=returncode, stdout=stdout, stderr=stderr)


def _expect_mapping(payload: Any) -> dict[str, Any]:
    return payload if isinstance(payload, dict) else {}


def _expect_list(payload: Any) -> list[Any]:
    return payload if isinstance(payload, list) else []


def _error_message(error: Exception) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__
