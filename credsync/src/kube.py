from __future__ import annotations

import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException, CoreV1Api
from kubernetes.config.config_exception import ConfigException

LOGGER = logging.getLogger(__name__)

DOCKER_CONFIG_KEY = ".dockerconfigjson"
DOCKER_CONFIG_SECRET_TYPE = "kubernetes.io/dockerconfigjson"


class ApiError(RuntimeError):
    """A Kubernetes API call returned a non-2xx status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"Kubernetes API error {status}: {message}")
        self.status = status
        self.message = message

    @classmethod
    def from_exception(cls, exc: ApiException) -> ApiError:
        return cls(status=exc.status or 0, message=str(exc.reason or exc.body or "unknown"))


def load_kube_configuration() -> None:
    """Load Kubernetes client configuration.

    Attempts in-cluster config first (running inside a pod), falling back
    to the local kubeconfig for development.
    """
    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        LOGGER.info("Loaded local kubeconfig")


def build_core_api() -> CoreV1Api:
    return client.CoreV1Api()


def _item_names(listing: Any) -> list[str]:
    names: list[str] = []
    for item in getattr(listing, "items", None) or []:
        name = getattr(getattr(item, "metadata", None), "name", None)
        if name:
            names.append(name)
    return names


def list_target_namespaces(core_api: CoreV1Api, label_selector: str) -> list[str]:
    """Return the names of all namespaces matching *label_selector*.

    Raises :class:`ApiError` when the list call is rejected. No match is an
    empty list, not an error.
    """
    try:
        listing = core_api.list_namespace(label_selector=label_selector)
    except ApiException as exc:
        raise ApiError.from_exception(exc) from exc
    return _item_names(listing)


def secret_exists(core_api: CoreV1Api, namespace: str, secret_name: str) -> bool:
    """Report whether *secret_name* exists in *namespace*.

    Implemented as list-then-match so callers only depend on this function,
    not on how existence is determined.
    """
    try:
        listing = core_api.list_namespaced_secret(namespace=namespace)
    except ApiException as exc:
        raise ApiError.from_exception(exc) from exc
    return secret_name in _item_names(listing)


def build_secret_body(namespace: str, secret_name: str, docker_config: str) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": DOCKER_CONFIG_SECRET_TYPE,
        "metadata": {"name": secret_name, "namespace": namespace},
        "data": {DOCKER_CONFIG_KEY: docker_config},
    }


def create_secret(
    core_api: CoreV1Api, namespace: str, secret_name: str, docker_config: str
) -> None:
    body = build_secret_body(namespace, secret_name, docker_config)
    try:
        core_api.create_namespaced_secret(namespace=namespace, body=body)
    except ApiException as exc:
        raise ApiError.from_exception(exc) from exc


def patch_secret_data(
    core_api: CoreV1Api, namespace: str, secret_name: str, docker_config: str
) -> None:
    """Replace only the ``.dockerconfigjson`` field of an existing secret.

    A JSON patch (list body) leaves labels, annotations and any other
    metadata added by operators untouched.
    """
    body = [
        {
            "op": "replace",
            "path": f"/data/{DOCKER_CONFIG_KEY}",
            "value": docker_config,
        }
    ]
    try:
        core_api.patch_namespaced_secret(name=secret_name, namespace=namespace, body=body)
    except ApiException as exc:
        raise ApiError.from_exception(exc) from exc
