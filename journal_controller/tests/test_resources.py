from __future__ import annotations

import pytest

from journal_controller.src.resources import (
    Journal,
    JournalStatus,
    ResourceIdentity,
    desired_deployment,
    status_apply_body,
)


def _doc(**overrides: object) -> dict[str, object]:
    doc: dict[str, object] = {
        "apiVersion": "engula.io/v1alpha1",
        "kind": "Journal",
        "metadata": {
            "name": "journal-a",
            "namespace": "engula",
            "uid": "1234",
            "generation": 2,
            "resourceVersion": "77",
        },
        "spec": {"image": "engula/journal:0.3", "replicas": 3, "labels": {"app": "journal"}},
        "status": {"deploymentStatus": "Available"},
    }
    doc.update(overrides)
    return doc


def test_from_dict_parses_identity_spec_and_status() -> None:
    journal = Journal.from_dict(_doc())

    assert journal.identity == ResourceIdentity(namespace="engula", name="journal-a")
    assert str(journal.identity) == "engula/journal-a"
    assert journal.spec["replicas"] == 3
    assert journal.status == JournalStatus(deployment_status="Available")
    assert journal.uid == "1234"
    assert journal.resource_version == "77"


def test_to_dict_round_trips_known_fields() -> None:
    doc = _doc()

    assert Journal.from_dict(doc).to_dict() == doc


def test_from_dict_requires_name_and_namespace() -> None:
    with pytest.raises(ValueError):
        Journal.from_dict({"metadata": {"name": "journal-a"}})


def test_missing_status_defaults_to_empty() -> None:
    journal = Journal.from_dict(_doc(status=None))

    assert journal.status.deployment_status is None


def test_status_body_always_carries_deployment_status() -> None:
    body = status_apply_body(JournalStatus())

    assert body == {
        "apiVersion": "engula.io/v1alpha1",
        "kind": "Journal",
        "status": {"deploymentStatus": None},
    }


def test_desired_deployment_mirrors_identity_and_spec() -> None:
    deployment = desired_deployment(Journal.from_dict(_doc()))

    assert deployment.metadata.name == "journal-a"
    assert deployment.metadata.namespace == "engula"
    assert deployment.spec.replicas == 3
    assert deployment.spec.selector.match_labels == {"app": "journal"}
    assert deployment.spec.template.metadata.labels == {"app": "journal"}
    containers = deployment.spec.template.spec.containers
    assert len(containers) == 1
    assert containers[0].image == "engula/journal:0.3"
    owner = deployment.metadata.owner_references[0]
    assert owner.kind == "Journal"
    assert owner.uid == "1234"
    assert owner.controller is True


def test_desired_deployment_defaults() -> None:
    journal = Journal(identity=ResourceIdentity(namespace="engula", name="bare"))

    deployment = desired_deployment(journal)

    assert deployment.spec.replicas == 1
    assert deployment.metadata.labels == {}
    assert deployment.spec.selector.match_labels == {}
    assert len(deployment.spec.template.spec.containers) == 1
    assert deployment.metadata.owner_references is None


@pytest.mark.parametrize("replicas", ["3", -1, True, None])
def test_desired_deployment_ignores_invalid_replicas(replicas: object) -> None:
    journal = Journal.from_dict(_doc(spec={"replicas": replicas}))

    assert desired_deployment(journal).spec.replicas == 1
