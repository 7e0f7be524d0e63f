from __future__ import annotations

import logging
import uuid

from kubernetes.client import (
    ApiException,
    CoreV1Api,
    CoreV1Event,
    V1EventSource,
    V1ObjectMeta,
    V1ObjectReference,
)
from urllib3.exceptions import HTTPError

from journal_controller.src.errors import describe_cause
from journal_controller.src.resources import Journal
from journal_controller.src.state import utc_now

LOGGER = logging.getLogger(__name__)

EVENT_TYPE_WARNING = "Warning"


class EventRecorder:
    """Publishes Kubernetes Events that reference a Journal.

    Publishing is best-effort: API and transport failures are logged and
    never raised, so an unreachable Events endpoint cannot turn into a
    reconcile failure.
    """

    def __init__(self, core_api: CoreV1Api, reporter: str, enabled: bool = True) -> None:
        self.core_api = core_api
        self.reporter = reporter
        self.enabled = enabled

    def publish(
        self,
        journal: Journal,
        event_type: str,
        reason: str,
        note: str,
        action: str,
    ) -> bool:
        """Create an Event for *journal*. Returns True when the API accepted it."""
        if not self.enabled:
            return False

        now = utc_now()
        body = CoreV1Event(
            metadata=V1ObjectMeta(
                name=f"{journal.name}.{uuid.uuid4().hex[:16]}",
                namespace=journal.namespace,
            ),
            involved_object=V1ObjectReference(
                api_version=journal.api_version,
                kind=journal.kind,
                name=journal.name,
                namespace=journal.namespace,
                uid=journal.uid,
                resource_version=journal.resource_version,
            ),
            type=event_type,
            reason=reason,
            message=note,
            action=action,
            source=V1EventSource(component=self.reporter),
            reporting_component=self.reporter,
            reporting_instance=self.reporter,
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )
        try:
            self.core_api.create_namespaced_event(namespace=journal.namespace, body=body)
        except (ApiException, HTTPError) as exc:
            LOGGER.warning(
                "Failed to publish %s event for Journal %s: %s",
                reason,
                journal.identity,
                describe_cause(exc),
            )
            return False
        return True
