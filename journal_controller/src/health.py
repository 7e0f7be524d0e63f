from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

StateProvider = Callable[[], dict[str, Any]]


class _ControllerHandler(BaseHTTPRequestHandler):
    """HTTP handler serving controller state, probes and Prometheus metrics."""

    ready_event: threading.Event
    state_provider: StateProvider

    def _respond(
        self, status: int, body: bytes = b"", content_type: str | None = None
    ) -> None:
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        self.end_headers()
        if body:
            self.wfile.write(body)

    def do_GET(self) -> None:
        if self.path == "/":
            body = json.dumps(self.state_provider()).encode()
            self._respond(200, body, "application/json")
        elif self.path == "/healthz":
            self._respond(200, b"ok")
        elif self.path == "/readyz":
            if self.ready_event.is_set():
                self._respond(200, b"ready=true")
            else:
                self._respond(503, b"ready=false")
        elif self.path == "/metrics":
            self._respond(200, generate_latest(), CONTENT_TYPE_LATEST)
        else:
            self._respond(404)

    def log_message(self, fmt: str, *args: Any) -> None:
        logging.getLogger("journal_controller.health").debug(fmt, *args)


def make_handler(ready: threading.Event, state_provider: StateProvider) -> type[_ControllerHandler]:
    """Return a handler class bound to the readiness event and state provider.

    Uses class-level attribute binding so the stdlib HTTPServer can
    instantiate handlers without constructor arguments.
    """

    class _BoundControllerHandler(_ControllerHandler):
        ready_event = ready

    _BoundControllerHandler.state_provider = staticmethod(state_provider)  # type: ignore[assignment]
    return _BoundControllerHandler


def start_health_server(
    ready: threading.Event, port: int, state_provider: StateProvider
) -> ThreadingHTTPServer:
    """Start the state/health/metrics HTTP server in a daemon thread and return it."""
    handler_class = make_handler(ready, state_provider)
    server = ThreadingHTTPServer(("0.0.0.0", port), handler_class)  # noqa: S104
    server.daemon_threads = True
    server.block_on_close = False
    threading.Thread(target=server.serve_forever, daemon=True).start()
    logging.getLogger(__name__).info("Controller HTTP server listening on :%d", port)
    return server
