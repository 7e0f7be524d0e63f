from __future__ import annotations

import logging
from typing import Any

from kubernetes.client import ApiException
from kubernetes.config.config_exception import ConfigException
from prometheus_client import REGISTRY
from prometheus_client.metrics_core import Metric
from urllib3.exceptions import HTTPError

from journal_controller.src.config import ControllerConfig
from journal_controller.src.errors import ControllerStartupError
from journal_controller.src.events import EventRecorder
from journal_controller.src.kube import (
    KubeClients,
    build_clients,
    list_journals,
    load_kube_configuration,
)
from journal_controller.src.metrics import METRICS, ControllerMetrics
from journal_controller.src.reconciler import Reconciler
from journal_controller.src.resources import GROUP, PLURAL
from journal_controller.src.scheduler import ReconcileScheduler
from journal_controller.src.state import ControllerState, SharedControllerState

LOGGER = logging.getLogger(__name__)

CRD_MISSING_HINT = (
    f"is the CRD installed? please apply the {PLURAL}.{GROUP} CustomResourceDefinition "
    "to the cluster before starting the controller"
)


class Manager:
    """Owns the controller lifecycle and exposes metrics and state accessors.

    :meth:`initialize` checks the startup preconditions, wires the
    reconciler to the scheduler and returns both a ``Manager`` handle and
    the scheduler that drives reconciliation. It is up to the caller to run
    ``driver.run_forever()``.
    """

    def __init__(self, state: SharedControllerState) -> None:
        self._state = state

    @classmethod
    def initialize(
        cls,
        config: ControllerConfig | None = None,
        clients: KubeClients | None = None,
        metrics: ControllerMetrics = METRICS,
    ) -> tuple[Manager, ReconcileScheduler]:
        """Validate preconditions and return ``(manager, driver)``.

        Raises :class:`ControllerStartupError` when the cluster cannot be
        reached or the Journal kind is not served; nothing is watched or
        reconciled in that case.
        """
        config = config or ControllerConfig()
        if clients is None:
            try:
                load_kube_configuration()
            except ConfigException as exc:
                raise ControllerStartupError(f"cannot load Kubernetes configuration: {exc}") from exc
            clients = build_clients()

        state = SharedControllerState(reporter=config.reporter)

        # Ensure the CRD is installed before watching.
        try:
            list_journals(clients.custom_api, namespace=config.watch_namespace, limit=1)
        except ApiException as exc:
            if exc.status == 404:
                raise ControllerStartupError(CRD_MISSING_HINT) from exc
            raise ControllerStartupError(
                f"Journal probe failed (status={exc.status} reason={exc.reason}); {CRD_MISSING_HINT}"
            ) from exc
        except HTTPError as exc:
            raise ControllerStartupError(f"cannot reach the Kubernetes API: {exc}") from exc

        recorder = EventRecorder(
            core_api=clients.core_api,
            reporter=config.reporter,
            enabled=config.publish_events,
        )
        reconciler = Reconciler(
            custom_api=clients.custom_api,
            apps_api=clients.apps_api,
            state=state,
            config=config,
            metrics=metrics,
            recorder=recorder,
        )
        driver = ReconcileScheduler(
            custom_api=clients.custom_api,
            reconciler=reconciler,
            namespace=config.watch_namespace,
            workers=config.workers,
            metrics=metrics,
            error_backoff_seconds=float(config.error_backoff_seconds),
        )
        LOGGER.info(
            "Journal controller initialized (namespace=%s, workers=%d)",
            config.watch_namespace or "<all>",
            config.workers,
        )
        return cls(state=state), driver

    def metrics(self) -> list[Metric]:
        """Return a snapshot of every registered metric family."""
        return list(REGISTRY.collect())

    def state(self) -> ControllerState:
        return self._state.snapshot()

    def state_dict(self) -> dict[str, Any]:
        return self.state().to_dict()
