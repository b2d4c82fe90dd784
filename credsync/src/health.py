from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest


class _HealthHandler(BaseHTTPRequestHandler):
    """HTTP handler serving liveness, readiness, and Prometheus metrics endpoints.

    ``/readyz`` reports one ``name=true|false`` pair per readiness check,
    e.g. ``watch=true sweep=false``, and is 200 only when all are set.
    """

    ready_checks: Mapping[str, threading.Event]

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
        if self.path == "/healthz":
            self._respond(200, b"ok")
        elif self.path == "/readyz":
            states = {name: event.is_set() for name, event in self.ready_checks.items()}
            text = " ".join(f"{name}={'true' if ok else 'false'}" for name, ok in states.items())
            self._respond(200 if all(states.values()) else 503, text.encode())
        elif self.path == "/metrics":
            self._respond(200, generate_latest(), CONTENT_TYPE_LATEST)
        else:
            self._respond(404)

    def log_message(self, fmt: str, *args: Any) -> None:
        logging.getLogger("credsync.health").debug(fmt, *args)


def make_health_handler(ready_checks: Mapping[str, threading.Event]) -> type[_HealthHandler]:
    """Return a handler class bound to the given readiness events.

    Uses class-level attribute binding so the stdlib HTTPServer can
    instantiate handlers without constructor arguments.
    """

    class _BoundHealthHandler(_HealthHandler):
        pass

    _BoundHealthHandler.ready_checks = dict(ready_checks)
    return _BoundHealthHandler


def start_health_server(
    ready_checks: Mapping[str, threading.Event], port: int
) -> ThreadingHTTPServer:
    """Start the health/metrics HTTP server in a daemon thread and return it."""
    server = ThreadingHTTPServer(("0.0.0.0", port), make_health_handler(ready_checks))  # noqa: S104
    server.daemon_threads = True
    server.block_on_close = False
    threading.Thread(target=server.serve_forever, daemon=True).start()
    logging.getLogger(__name__).info("Health server listening on :%d", port)
    return server
