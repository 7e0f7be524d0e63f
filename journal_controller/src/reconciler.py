from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes.client import ApiException, AppsV1Api, CustomObjectsApi, V1Deployment
from urllib3.exceptions import HTTPError

from journal_controller.src.config import ControllerConfig
from journal_controller.src.errors import ReconcileError, describe_cause
from journal_controller.src.events import EVENT_TYPE_WARNING, EventRecorder
from journal_controller.src.kube import apply_journal_status, read_deployment
from journal_controller.src.metrics import METRICS, ControllerMetrics
from journal_controller.src.resources import (
    Journal,
    JournalStatus,
    ResourceIdentity,
    desired_deployment,
)
from journal_controller.src.state import SharedControllerState

LOGGER = logging.getLogger(__name__)


def new_trace_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ReconcileContext:
    """Everything one reconcile invocation needs, created fresh per call."""

    custom_api: CustomObjectsApi
    apps_api: AppsV1Api
    state: SharedControllerState
    metrics: ControllerMetrics
    recorder: EventRecorder | None
    trace_id: str

    def log_extra(self, identity: ResourceIdentity) -> dict[str, Any]:
        return {"trace_id": self.trace_id, "journal": str(identity)}


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one invocation and when the Journal should be looked at again."""

    identity: ResourceIdentity
    requeue_after: float
    error: ReconcileError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def error_policy(
    error: BaseException,
    ctx: ReconcileContext | None = None,
    backoff_seconds: float = 360.0,
) -> float:
    """Log a failed reconcile and return the delay before it is retried.

    Every failure type gets the same fixed, positive delay so a broken
    Journal is neither hot-looped nor dropped from the schedule.
    """
    delay = backoff_seconds if backoff_seconds > 0 else 360.0
    identity = getattr(error, "identity", None)
    cause = getattr(error, "cause", error)
    extra = ctx.log_extra(identity) if ctx is not None and identity is not None else None
    LOGGER.warning(
        "reconcile failed for Journal %s: %s; retrying in %.0fs",
        identity if identity is not None else "<unknown>",
        describe_cause(cause),
        delay,
        extra=extra,
    )
    return delay


class Reconciler:
    """Drives one Journal toward its declared state.

    Each call to :meth:`reconcile`:

    1. stamps ``last_event`` in the shared controller state,
    2. server-side applies the status fields owned by this controller,
    3. reads the Deployment with the same identity (absent is not an error),
    4. builds the desired Deployment for comparison (not applied yet),
    5. records exactly one duration observation and one handled event.

    API and transport failures in steps 2 and 3 abort the invocation as a
    :class:`ReconcileError`; :meth:`run` hands those to :func:`error_policy`.
    """

    def __init__(
        self,
        custom_api: CustomObjectsApi,
        apps_api: AppsV1Api,
        state: SharedControllerState,
        config: ControllerConfig | None = None,
        metrics: ControllerMetrics = METRICS,
        recorder: EventRecorder | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.custom_api = custom_api
        self.apps_api = apps_api
        self.state = state
        self.config = config or ControllerConfig()
        self.metrics = metrics
        self.recorder = recorder
        self.clock = clock

    def make_context(self, trace_id: str | None = None) -> ReconcileContext:
        return ReconcileContext(
            custom_api=self.custom_api,
            apps_api=self.apps_api,
            state=self.state,
            metrics=self.metrics,
            recorder=self.recorder,
            trace_id=trace_id or new_trace_id(),
        )

    def reconcile(self, journal: Journal, ctx: ReconcileContext) -> float:
        """Run one convergence step and return the resync delay in seconds."""
        identity = journal.identity
        extra = ctx.log_extra(identity)
        started = self.clock()
        LOGGER.debug("Reconciling Journal %s", identity, extra=extra)
        try:
            ctx.state.touch()

            try:
                apply_journal_status(
                    ctx.custom_api,
                    identity,
                    JournalStatus(deployment_status=None),
                    field_manager=self.config.field_manager,
                )
            except (ApiException, HTTPError) as exc:
                raise ReconcileError(identity, "status apply", exc) from exc

            try:
                current = read_deployment(ctx.apps_api, identity)
            except (ApiException, HTTPError) as exc:
                raise ReconcileError(identity, "deployment lookup", exc) from exc

            self._compare_deployment(journal, current, extra)
        finally:
            ctx.metrics.reconcile_duration.observe(max(0.0, self.clock() - started))
            ctx.metrics.handled_events.inc()

        LOGGER.info(
            'Reconciled Journal "%s" in %s',
            identity.name,
            identity.namespace,
            extra=extra,
        )
        return float(self.config.resync_seconds)

    @staticmethod
    def _compare_deployment(
        journal: Journal,
        current: V1Deployment | None,
        extra: dict[str, Any],
    ) -> None:
        desired = desired_deployment(journal)
        if current is None:
            LOGGER.debug(
                "Deployment %s not found; desired replicas=%s",
                journal.identity,
                desired.spec.replicas,
                extra=extra,
            )
            return
        observed_replicas = getattr(getattr(current, "spec", None), "replicas", None)
        if observed_replicas != desired.spec.replicas:
            LOGGER.debug(
                "Deployment %s replicas drifted (observed=%s desired=%s)",
                journal.identity,
                observed_replicas,
                desired.spec.replicas,
                extra=extra,
            )

    def run(self, journal: Journal, trace_id: str | None = None) -> ReconcileResult:
        """Reconcile *journal* and always return a positive requeue delay.

        Never raises: failures are contained here so they cannot reach the
        worker thread or any other Journal.
        """
        ctx = self.make_context(trace_id)
        try:
            delay = self.reconcile(journal, ctx)
            return ReconcileResult(identity=journal.identity, requeue_after=delay)
        except ReconcileError as exc:
            error = exc
        except Exception as exc:
            LOGGER.exception(
                "Unexpected error reconciling Journal %s",
                journal.identity,
                extra=ctx.log_extra(journal.identity),
            )
            error = ReconcileError(journal.identity, "reconcile", exc)

        ctx.metrics.reconcile_failures.inc()
        delay = error_policy(error, ctx, backoff_seconds=float(self.config.error_backoff_seconds))
        if ctx.recorder is not None:
            ctx.recorder.publish(
                journal,
                event_type=EVENT_TYPE_WARNING,
                reason="ReconcileFailed",
                note=str(error),
                action="Reconciling",
            )
        return ReconcileResult(identity=journal.identity, requeue_after=delay, error=error)
