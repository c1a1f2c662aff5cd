from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiException

OBJECT_BUCKET_GROUP = "objectbucket.io"
OBJECT_BUCKET_VERSION = "v1alpha1"
ROUTE_GROUP = "route.openshift.io"
ROUTE_VERSION = "v1"
T = TypeVar("T")


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    core_api: client.CoreV1Api
    custom_objects_api: client.CustomObjectsApi


class KubernetesDiscoveryError(RuntimeError):
    """Raised when a required Kubernetes listing cannot be completed."""


class KubernetesAuthenticationError(RuntimeError):
    """Raised when Kubernetes authentication configuration fails."""


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> KubernetesClients:
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=expanded, context=context)
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesAuthenticationError(
            _format_authentication_error(
                in_cluster=in_cluster,
                kubeconfig_path=expanded,
                context=context,
                error=error,
            )
        ) from error

    api_client = client.ApiClient()
    return KubernetesClients(
        api_client=api_client,
        core_api=client.CoreV1Api(api_client),
        custom_objects_api=client.CustomObjectsApi(api_client),
    )


def bearer_token(clients: KubernetesClients) -> str | None:
    configuration = getattr(clients.api_client, "configuration", None)
    api_key = getattr(configuration, "api_key", None)
    if not isinstance(api_key, dict):
        return None
    value = api_key.get("authorization") or api_key.get("BearerToken") or ""
    if not isinstance(value, str):
        return None
    token = value.removeprefix("Bearer ").strip()
    return token or None


def list_persistent_volumes(clients: KubernetesClients) -> list[Any]:
    return _safe_kubernetes_discovery_call(
        operation="list PersistentVolumes",
        hint="Verify RBAC allows list on persistentvolumes: oc auth can-i list pv",
        func=lambda: clients.core_api.list_persistent_volume().items,
    )


def list_persistent_volume_claims(clients: KubernetesClients) -> list[Any]:
    return _safe_kubernetes_discovery_call(
        operation="list PersistentVolumeClaims across all namespaces",
        hint="Verify RBAC allows list on persistentvolumeclaims: oc auth can-i list pvc -A",
        func=lambda: clients.core_api.list_persistent_volume_claim_for_all_namespaces().items,
    )


def list_object_bucket_claims(clients: KubernetesClients) -> list[dict[str, Any]]:
    return _list_optional(
        operation="list ObjectBucketClaims across all namespaces",
        hint="Check that the objectbucket.io CRDs are installed: oc get crd objectbucketclaims.objectbucket.io",
        func=lambda: clients.custom_objects_api.list_cluster_custom_object(
            group=OBJECT_BUCKET_GROUP,
            version=OBJECT_BUCKET_VERSION,
            plural="objectbucketclaims",
        ).get("items", []),
    )


def list_object_buckets(clients: KubernetesClients) -> list[dict[str, Any]]:
    return _list_optional(
        operation="list ObjectBuckets",
        hint="Check that the objectbucket.io CRDs are installed: oc get crd objectbuckets.objectbucket.io",
        func=lambda: clients.custom_objects_api.list_cluster_custom_object(
            group=OBJECT_BUCKET_GROUP,
            version=OBJECT_BUCKET_VERSION,
            plural="objectbuckets",
        ).get("items", []),
    )


def list_provisioner_secrets(clients: KubernetesClients, label_selector: str) -> list[Any]:
    return _list_optional(
        operation=f"list Secrets labelled '{label_selector}'",
        hint=f"Verify RBAC allows list on secrets: oc get secrets -A -l {label_selector}",
        func=lambda: clients.core_api.list_secret_for_all_namespaces(label_selector=label_selector).items,
    )


def read_route(clients: KubernetesClients, *, namespace: str, name: str) -> dict[str, Any] | None:
    try:
        return clients.custom_objects_api.get_namespaced_custom_object(
            group=ROUTE_GROUP,
            version=ROUTE_VERSION,
            namespace=namespace,
            plural="routes",
            name=name,
        )
    except ApiException as error:
        if error.status in {403, 404}:
            return None
        raise KubernetesDiscoveryError(
            _format_api_exception_message(
                operation=f"read Route '{namespace}/{name}'",
                hint=f"Run: oc get route {name} -n {namespace}",
                error=error,
            )
        ) from error


def read_service(clients: KubernetesClients, *, namespace: str, name: str) -> Any | None:
    try:
        return clients.core_api.read_namespaced_service(name=name, namespace=namespace)
    except ApiException as error:
        if error.status in {403, 404}:
            return None
        raise KubernetesDiscoveryError(
            _format_api_exception_message(
                operation=f"read Service '{namespace}/{name}'",
                hint=f"Run: oc get svc {name} -n {namespace}",
                error=error,
            )
        ) from error


def _list_optional(*, operation: str, hint: str, func: Callable[[], list[T]]) -> list[T]:
    try:
        return list(func())
    except ApiException as error:
        if error.status == 404:
            return []
        raise KubernetesDiscoveryError(
            _format_api_exception_message(operation=operation, hint=hint, error=error)
        ) from error


def _safe_kubernetes_discovery_call(*, operation: str, hint: str, func: Callable[[], T]) -> T:
    try:
        return func()
    except ApiException as error:
        raise KubernetesDiscoveryError(
            _format_api_exception_message(
                operation=operation,
                hint=hint,
                error=error,
            )
        ) from error
    except Exception as error:
        raise KubernetesDiscoveryError(
            f"Kubernetes discovery failed while trying to {operation}: {error}. {hint}"
        ) from error


def _format_api_exception_message(*, operation: str, hint: str, error: ApiException) -> str:
    status = error.status if error.status is not None else "unknown"
    reason = error.reason or "no reason provided"
    return (
        f"Kubernetes discovery failed while trying to {operation}: "
        f"API status {status} ({reason}). {hint}"
    )


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    in_cluster: bool,
    kubeconfig_path: str | None,
    context: str | None,
    error: Exception,
) -> str:
    reason = str(error).strip() or error.__class__.__name__
    if in_cluster:
        return (
            "Kubernetes authentication setup failed while loading in-cluster service account credentials: "
            f"{reason}. Ensure the pod has a mounted service account token and Kubernetes service host "
            "environment variables."
        )

    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else ""
    return (
        "Kubernetes authentication setup failed while loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message}: {reason}. "
        "Verify the kubeconfig path and context are valid, then run: oc whoami"
    )
