from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client import ApiException

from journal_controller.src.kube import (
    apply_journal_status,
    build_clients,
    list_journals,
    load_kube_configuration,
    read_deployment,
)
from journal_controller.src.resources import JournalStatus, ResourceIdentity

IDENTITY = ResourceIdentity(namespace="engula", name="journal-a")


def test_load_kube_configuration_in_cluster() -> None:
    with (
        patch("journal_controller.src.kube.config.load_incluster_config") as mock_incluster,
        patch("journal_controller.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_incluster.assert_called_once()
    mock_kubeconfig.assert_not_called()


def test_load_kube_configuration_local_fallback() -> None:
    from kubernetes.config.config_exception import ConfigException

    with (
        patch(
            "journal_controller.src.kube.config.load_incluster_config",
            side_effect=ConfigException("not in cluster"),
        ),
        patch("journal_controller.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_kubeconfig.assert_called_once()


def test_build_clients_returns_all_handles() -> None:
    with patch("journal_controller.src.kube.client") as mock_client:
        mock_client.CustomObjectsApi.return_value = SimpleNamespace(name="custom")
        mock_client.AppsV1Api.return_value = SimpleNamespace(name="apps")
        mock_client.CoreV1Api.return_value = SimpleNamespace(name="core")
        clients = build_clients()

    assert clients.custom_api.name == "custom"
    assert clients.apps_api.name == "apps"
    assert clients.core_api.name == "core"


def test_list_journals_cluster_wide() -> None:
    api = MagicMock()

    list_journals(api, limit=1)

    api.list_cluster_custom_object.assert_called_once_with(
        group="engula.io", version="v1alpha1", plural="journals", limit=1
    )
    api.list_namespaced_custom_object.assert_not_called()


def test_list_journals_in_namespace() -> None:
    api = MagicMock()

    list_journals(api, namespace="engula", watch=True)

    kwargs = api.list_namespaced_custom_object.call_args.kwargs
    assert kwargs["namespace"] == "engula"
    assert kwargs["watch"] is True


def test_apply_journal_status_sends_apply_patch() -> None:
    api = MagicMock()

    apply_journal_status(api, IDENTITY, JournalStatus(), field_manager="cntrlr")

    kwargs = api.patch_namespaced_custom_object_status.call_args.kwargs
    assert kwargs["name"] == "journal-a"
    assert kwargs["namespace"] == "engula"
    assert kwargs["field_manager"] == "cntrlr"
    assert kwargs["force"] is True
    assert kwargs["_content_type"] == "application/apply-patch+yaml"
    assert kwargs["body"]["status"] == {"deploymentStatus": None}


def test_read_deployment_returns_object() -> None:
    api = MagicMock()
    api.read_namespaced_deployment.return_value = SimpleNamespace(name="journal-a")

    assert read_deployment(api, IDENTITY).name == "journal-a"
    api.read_namespaced_deployment.assert_called_once_with(name="journal-a", namespace="engula")


def test_read_deployment_returns_none_when_missing() -> None:
    api = MagicMock()
    api.read_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")

    assert read_deployment(api, IDENTITY) is None


def test_read_deployment_propagates_other_errors() -> None:
    api = MagicMock()
    api.read_namespaced_deployment.side_effect = ApiException(status=500, reason="boom")

    with pytest.raises(ApiException):
        read_deployment(api, IDENTITY)
