from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Histogram, Info

RECONCILE_DURATION_BUCKETS = (0.01, 0.1, 0.25, 0.5, 1, 5, 15, 60)


@dataclass(frozen=True)
class ControllerMetrics:
    """Prometheus metrics exported by the controller on ``/metrics``.

    ``handled_events`` and ``reconcile_duration`` are recorded exactly once
    per reconcile invocation, whether it succeeded or failed. Instruments are
    thread safe, so worker threads update them without extra locking.
    """

    handled_events: Counter = field(
        default_factory=lambda: Counter(
            "journal_controller_handled_events",
            "handled events",
        )
    )
    reconcile_duration: Histogram = field(
        default_factory=lambda: Histogram(
            "journal_controller_reconcile_duration_seconds",
            "The duration of reconcile to complete in seconds",
            buckets=RECONCILE_DURATION_BUCKETS,
        )
    )
    reconcile_failures: Counter = field(
        default_factory=lambda: Counter(
            "journal_controller_reconcile_failures",
            "Reconcile invocations routed to the error policy",
        )
    )
    watch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "journal_controller_watch_errors_total",
            "Total Kubernetes watch errors",
        )
    )
    watch_reconnects_total: Counter = field(
        default_factory=lambda: Counter(
            "journal_controller_watch_reconnects_total",
            "Total watch stream reconnects after the initial connection",
        )
    )
    pending_reconciles: Gauge = field(
        default_factory=lambda: Gauge(
            "journal_controller_pending_reconciles",
            "Journals queued or waiting for their next scheduled reconcile",
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "journal_controller_build",
            "Build information for the controller",
        )
    )


METRICS = ControllerMetrics()
