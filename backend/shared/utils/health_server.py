"""
Minimal HTTP server for the standalone scheduler worker.
Serves GET /health on PORT (or the configured health_port) so container
healthchecks succeed. Runs in a daemon thread.
"""
from __future__ import annotations

import json
import os
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)


def start_health_server(
    service_name: str,
    port: Optional[int] = None,
    status_fn: Optional[Callable[[], dict[str, Any]]] = None,
) -> Optional[HTTPServer]:
    """
    Start a daemon thread that listens on PORT and responds to GET /health.

    status_fn, when given, is merged into the response body; it is called
    from the server thread and must only read state.
    Returns the server, or None when no port is configured.
    """
    port_str = os.environ.get("PORT")
    if port_str:
        try:
            port = int(port_str)
        except ValueError:
            logger.warning("health_server_bad_port", port=port_str)
    if not port:
        return None

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            if self.path.rstrip("/") != "/health":
                self.send_response(404)
                self.end_headers()
                return
            payload: dict[str, Any] = {"status": "ok", "service": service_name}
            if status_fn is not None:
                payload.update(status_fn())
            body = json.dumps(payload, default=str).encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: object) -> None:
            pass

    httpd = HTTPServer(("0.0.0.0", port), Handler)
    threading.Thread(target=httpd.serve_forever, daemon=True).start()
    logger.info("health_server_started", port=port)
    return httpd
