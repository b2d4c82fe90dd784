from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client import ApiException

from credsync.src.kube import (
    ApiError,
    build_core_api,
    build_secret_body,
    create_secret,
    list_target_namespaces,
    load_kube_configuration,
    patch_secret_data,
    secret_exists,
)
from credsync.tests.fakes import FakeCoreApi


def test_load_kube_configuration_in_cluster() -> None:
    with (
        patch("credsync.src.kube.config.load_incluster_config") as mock_incluster,
        patch("credsync.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_incluster.assert_called_once()
    mock_kubeconfig.assert_not_called()


def test_load_kube_configuration_local_fallback() -> None:
    from kubernetes.config.config_exception import ConfigException

    with (
        patch(
            "credsync.src.kube.config.load_incluster_config",
            side_effect=ConfigException("not in cluster"),
        ),
        patch("credsync.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_kubeconfig.assert_called_once()


def test_build_core_api() -> None:
    with patch("credsync.src.kube.client") as mock_client:
        mock_client.CoreV1Api.return_value = SimpleNamespace(name="core")
        core = build_core_api()

    assert core.name == "core"


# ---------------------------------------------------------------------------
# Namespace lister
# ---------------------------------------------------------------------------


def test_list_target_namespaces_filters_by_selector() -> None:
    core_api = FakeCoreApi(
        namespaces={
            "team-a": {"credentialType": "ecr"},
            "team-b": {"credentialType": "ecr"},
            "kube-system": {},
        }
    )

    names = list_target_namespaces(core_api, "credentialType=ecr")

    assert names == ["team-a", "team-b"]
    assert core_api.last_label_selector == "credentialType=ecr"


def test_list_target_namespaces_returns_empty_list_when_nothing_matches() -> None:
    core_api = FakeCoreApi(namespaces={"default": {}})

    assert list_target_namespaces(core_api, "credentialType=ecr") == []


def test_list_target_namespaces_translates_api_exception() -> None:
    core_api = FakeCoreApi(list_namespaces_status=403)

    with pytest.raises(ApiError) as exc_info:
        list_target_namespaces(core_api, "credentialType=ecr")

    assert exc_info.value.status == 403
    assert exc_info.value.message == "list failed"


# ---------------------------------------------------------------------------
# Secret CRUD
# ---------------------------------------------------------------------------


def test_secret_exists_matches_by_name() -> None:
    core_api = FakeCoreApi(
        secrets={("team-a", "other"): {}, ("team-b", "ecr-creds"): {}},
    )

    assert secret_exists(core_api, "team-a", "ecr-creds") is False
    assert secret_exists(core_api, "team-b", "ecr-creds") is True


def test_secret_exists_raises_api_error() -> None:
    core_api = FakeCoreApi(list_secrets_status={"team-a": 500})

    with pytest.raises(ApiError, match="500"):
        secret_exists(core_api, "team-a", "ecr-creds")


def test_build_secret_body_has_fixed_schema() -> None:
    body = build_secret_body("team-a", "ecr-creds", "ZG9j")

    assert body == {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "kubernetes.io/dockerconfigjson",
        "metadata": {"name": "ecr-creds", "namespace": "team-a"},
        "data": {".dockerconfigjson": "ZG9j"},
    }


def test_create_secret_sends_full_body() -> None:
    mock_core_api = MagicMock()

    create_secret(mock_core_api, "team-a", "ecr-creds", "ZG9j")

    call_kwargs = mock_core_api.create_namespaced_secret.call_args.kwargs
    assert call_kwargs["namespace"] == "team-a"
    assert call_kwargs["body"]["data"] == {".dockerconfigjson": "ZG9j"}


def test_patch_secret_data_sends_json_patch_for_data_field_only() -> None:
    mock_core_api = MagicMock()

    patch_secret_data(mock_core_api, "team-a", "ecr-creds", "ZG9j")

    call_kwargs = mock_core_api.patch_namespaced_secret.call_args.kwargs
    assert call_kwargs["name"] == "ecr-creds"
    assert call_kwargs["namespace"] == "team-a"
    body: list[dict[str, Any]] = call_kwargs["body"]
    assert body == [{"op": "replace", "path": "/data/.dockerconfigjson", "value": "ZG9j"}]


def test_write_failures_raise_api_error() -> None:
    mock_core_api = MagicMock()
    mock_core_api.patch_namespaced_secret.side_effect = ApiException(status=422, reason="bad")

    with pytest.raises(ApiError) as exc_info:
        patch_secret_data(mock_core_api, "team-a", "ecr-creds", "ZG9j")

    assert exc_info.value.status == 422
