from __future__ import annotations

import json
import logging
import os
import re
import signal
import sys
import threading

from journal_controller.src.config import ConfigError, ControllerConfig
from journal_controller.src.errors import ControllerStartupError
from journal_controller.src.health import start_health_server
from journal_controller.src.manager import Manager
from journal_controller.src.metrics import METRICS

RUNTIME_VERSION = "0.1.0"
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
)


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects, carrying reconcile trace ids when present."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        for attr in ("trace_id", "journal"):
            value = getattr(record, attr, None)
            if value is not None:
                log_entry[attr] = str(value)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def configure_logging() -> None:
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(JSONFormatter())
    logging.root.addHandler(log_handler)
    logging.root.setLevel(getattr(logging, log_level, logging.INFO))


def main() -> None:
    """Controller entrypoint: check preconditions, serve state/metrics and run the reconcile loop."""
    configure_logging()
    logger = logging.getLogger(__name__)
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    try:
        config = ControllerConfig.from_env()
        manager, driver = Manager.initialize(config)
    except (ConfigError, ControllerStartupError) as exc:
        logger.error("Controller startup failed: %s", exc)
        sys.exit(1)

    server = start_health_server(
        ready=driver.ready,
        port=config.health_port,
        state_provider=manager.state_dict,
    )

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()
        # request_stop takes locks the interrupted main thread may hold.
        threading.Thread(target=driver.request_stop, name="controller-stop", daemon=True).start()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        driver.run_forever(shutdown_event=shutdown_event)
    finally:
        server.shutdown()

    if not shutdown_event.is_set():
        logger.error("Reconcile loop exited without a stop signal; terminating process")
        sys.exit(1)
    logger.info("Controller stopped")


if __name__ == "__main__":
    main()
