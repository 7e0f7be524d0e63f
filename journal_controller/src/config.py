from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


class ConfigError(RuntimeError):
    """Raised when the controller configuration is invalid."""


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    values = env if env is not None else os.environ
    raw = values.get(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


@dataclass(frozen=True)
class ControllerConfig:
    """Immutable controller configuration loaded at startup.

    Attributes:
        watch_namespace: Namespace to watch, or ``None`` for all namespaces.
        resync_seconds:  Requeue delay after a successful reconcile.
        error_backoff_seconds: Requeue delay after a failed reconcile.
        workers:         Number of reconcile worker threads.
        field_manager:   Server-side apply field manager for status patches.
        reporter:        Identity reported on Kubernetes Events.
        publish_events:  Whether reconcile failures are published as Events.
        health_port:     Port of the health/metrics/state HTTP server.
    """

    watch_namespace: str | None = None
    resync_seconds: int = 1800
    error_backoff_seconds: int = 360
    workers: int = 4
    field_manager: str = "cntrlr"
    reporter: str = "engula-operator"
    publish_events: bool = True
    health_port: int = 8080

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ControllerConfig:
        """Build a config from environment variables.

        Environment variables (with defaults):
            ``WATCH_NAMESPACE``      : namespace to watch (all namespaces).
            ``RESYNC_SECONDS``       : periodic requeue delay (``1800``).
            ``ERROR_BACKOFF_SECONDS``: requeue delay after failure (``360``).
            ``RECONCILE_WORKERS``    : worker threads (``4``).
            ``FIELD_MANAGER``        : status apply field manager (``cntrlr``).
            ``EVENT_REPORTER``       : Event reporting component (``engula-operator``).
            ``PUBLISH_EVENTS``       : publish failure Events (``true``).
            ``HEALTH_PORT``          : HTTP port (``8080``).
        """
        values = env if env is not None else os.environ

        namespace = (values.get("WATCH_NAMESPACE") or "").strip() or None

        field_manager = values.get("FIELD_MANAGER", "cntrlr").strip()
        if not field_manager:
            raise ConfigError("FIELD_MANAGER must be a non-empty string")

        reporter = values.get("EVENT_REPORTER", "engula-operator").strip()
        if not reporter:
            raise ConfigError("EVENT_REPORTER must be a non-empty string")

        return cls(
            watch_namespace=namespace,
            resync_seconds=env_int("RESYNC_SECONDS", 1800, minimum=1, env=values),
            error_backoff_seconds=env_int("ERROR_BACKOFF_SECONDS", 360, minimum=1, env=values),
            workers=env_int("RECONCILE_WORKERS", 4, minimum=1, maximum=64, env=values),
            field_manager=field_manager,
            reporter=reporter,
            publish_events=parse_bool(values.get("PUBLISH_EVENTS"), default=True),
            health_port=env_int("HEALTH_PORT", 8080, minimum=1, maximum=65535, env=values),
        )
