from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException, AppsV1Api, CoreV1Api, CustomObjectsApi, V1Deployment
from kubernetes.config.config_exception import ConfigException

from journal_controller.src.resources import (
    GROUP,
    PLURAL,
    VERSION,
    JournalStatus,
    ResourceIdentity,
    status_apply_body,
)

LOGGER = logging.getLogger(__name__)

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"


@dataclass(frozen=True)
class KubeClients:
    """API handles the controller talks to."""

    custom_api: CustomObjectsApi
    apps_api: AppsV1Api
    core_api: CoreV1Api


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


def build_clients() -> KubeClients:
    """Return API clients using the active kube configuration."""
    return KubeClients(
        custom_api=client.CustomObjectsApi(),
        apps_api=client.AppsV1Api(),
        core_api=client.CoreV1Api(),
    )


def list_journals(
    custom_api: CustomObjectsApi,
    namespace: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """List Journals cluster-wide, or in *namespace* when given.

    Extra keyword arguments (``limit``, ``resource_version``, ``watch``,
    ``timeout_seconds``) are passed through, so this also serves as the
    list function for :class:`kubernetes.watch.Watch`.
    """
    if namespace:
        return custom_api.list_namespaced_custom_object(
            group=GROUP,
            version=VERSION,
            namespace=namespace,
            plural=PLURAL,
            **kwargs,
        )
    return custom_api.list_cluster_custom_object(
        group=GROUP,
        version=VERSION,
        plural=PLURAL,
        **kwargs,
    )


def apply_journal_status(
    custom_api: CustomObjectsApi,
    identity: ResourceIdentity,
    status: JournalStatus,
    field_manager: str,
) -> Any:
    """Server-side apply *status* to the Journal's ``status`` subresource.

    The body contains only the fields owned by *field_manager* and conflicts
    are forced, so replaying the same call is a no-op on the server.
    """
    return custom_api.patch_namespaced_custom_object_status(
        group=GROUP,
        version=VERSION,
        namespace=identity.namespace,
        plural=PLURAL,
        name=identity.name,
        body=status_apply_body(status),
        field_manager=field_manager,
        force=True,
        _content_type=APPLY_PATCH_CONTENT_TYPE,
    )


def read_deployment(apps_api: AppsV1Api, identity: ResourceIdentity) -> V1Deployment | None:
    """Return the Deployment with *identity*, or ``None`` when it does not exist.

    Any API error other than ``404`` is re-raised.
    """
    try:
        return apps_api.read_namespaced_deployment(
            name=identity.name,
            namespace=identity.namespace,
        )
    except ApiException as exc:
        if exc.status == 404:
            return None
        raise
