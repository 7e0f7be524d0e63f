from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from kubernetes.client import (
    V1Container,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1OwnerReference,
    V1PodSpec,
    V1PodTemplateSpec,
)

GROUP = "engula.io"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"
KIND = "Journal"
PLURAL = "journals"

CONTAINER_NAME = "journal"
DEFAULT_REPLICAS = 1


@dataclass(frozen=True, order=True)
class ResourceIdentity:
    """The ``(namespace, name)`` pair shared by a Journal and its Deployment."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class JournalStatus:
    """Status sub-record owned by this controller."""

    deployment_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        # deploymentStatus is always rendered so an apply with None clears it.
        return {"deploymentStatus": self.deployment_status}

    @classmethod
    def from_dict(cls, raw: Any) -> JournalStatus:
        if not isinstance(raw, Mapping):
            return cls()
        value = raw.get("deploymentStatus")
        return cls(deployment_status=None if value is None else str(value))


@dataclass(frozen=True)
class Journal:
    """A ``Journal`` custom resource as returned by the custom objects API.

    Only the fields the controller reads are modelled; ``spec`` stays an
    opaque mapping because its runtime semantics belong to the workload.
    """

    identity: ResourceIdentity
    spec: Mapping[str, Any] = field(default_factory=dict)
    status: JournalStatus = field(default_factory=JournalStatus)
    uid: str | None = None
    generation: int | None = None
    resource_version: str | None = None
    api_version: str = API_VERSION
    kind: str = KIND

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def namespace(self) -> str:
        return self.identity.namespace

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Journal:
        """Parse a Journal document; raises ``ValueError`` when identity is missing."""
        metadata = raw.get("metadata") or {}
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        if not name or not namespace:
            raise ValueError("Journal metadata must include name and namespace")

        spec = raw.get("spec")
        return cls(
            identity=ResourceIdentity(namespace=namespace, name=name),
            spec=dict(spec) if isinstance(spec, Mapping) else {},
            status=JournalStatus.from_dict(raw.get("status")),
            uid=metadata.get("uid"),
            generation=metadata.get("generation"),
            resource_version=metadata.get("resourceVersion"),
            api_version=raw.get("apiVersion") or API_VERSION,
            kind=raw.get("kind") or KIND,
        )

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.uid is not None:
            metadata["uid"] = self.uid
        if self.generation is not None:
            metadata["generation"] = self.generation
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
            "spec": dict(self.spec),
            "status": self.status.to_dict(),
        }


def status_apply_body(status: JournalStatus) -> dict[str, Any]:
    """Return the server-side apply document for the Journal status subresource.

    The body carries only the fields this controller owns, so applying it
    repeatedly converges on the same status.
    """
    return {
        "apiVersion": API_VERSION,
        "kind": KIND,
        "status": status.to_dict(),
    }


def _string_map(raw: Any) -> dict[str, str]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(k): str(v) for k, v in raw.items() if v is not None}


def desired_deployment(journal: Journal) -> V1Deployment:
    """Build the Deployment that should realize *journal*.

    Name and namespace mirror the Journal. ``spec.replicas`` (default 1),
    ``spec.image`` and ``spec.labels`` fill in the template; the pod
    template always carries a single container.
    """
    spec = journal.spec
    labels = _string_map(spec.get("labels"))
    replicas = spec.get("replicas", DEFAULT_REPLICAS)
    if not isinstance(replicas, int) or isinstance(replicas, bool) or replicas < 0:
        replicas = DEFAULT_REPLICAS

    owner_references = None
    if journal.uid:
        owner_references = [
            V1OwnerReference(
                api_version=journal.api_version,
                kind=journal.kind,
                name=journal.name,
                uid=journal.uid,
                controller=True,
                block_owner_deletion=True,
            )
        ]

    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(
            name=journal.name,
            namespace=journal.namespace,
            labels=dict(labels),
            owner_references=owner_references,
        ),
        spec=V1DeploymentSpec(
            replicas=replicas,
            selector=V1LabelSelector(match_labels=dict(labels)),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=dict(labels)),
                spec=V1PodSpec(
                    containers=[
                        V1Container(
                            name=CONTAINER_NAME,
                            image=str(spec.get("image") or ""),
                        )
                    ]
                ),
            ),
        ),
    )
