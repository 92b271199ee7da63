"""
Bulk-read HTTP API.

Serves the known products as JSON so a client can seed its view before the
live feed delivers anything:

  GET /api/products   JSON array, most recently discovered first
  GET /health         {"status": "ok", "products": N, "subscribers": M}
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional
from urllib.parse import urlparse

from .config import API_HOST, API_PORT
from .store import KnownProductStore

logger = logging.getLogger(__name__)


class ProductsHandler(BaseHTTPRequestHandler):
    """HTTP handler for the bulk product read."""

    server_version = "UnifiMonitor/1.0"

    def log_message(self, format, *args):
        """Override to use Python logging instead of stderr."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_OPTIONS(self):
        self.send_response(204)
        self._send_cors_headers()
        self.send_header("Access-Control-Allow-Methods", "GET, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self):
        path = urlparse(self.path).path.rstrip("/") or "/"
        if path == "/api/products":
            self._send_products()
        elif path in ("/", "/health"):
            self._send_health()
        else:
            self._send_json(404, {"error": "Not found"})

    def _send_products(self):
        try:
            products = self.server.store.snapshot_all()
            body = [p.to_dict() for p in products]
        except Exception:
            logger.exception("Error in /api/products")
            self._send_json(500, {"error": "Internal server error"})
            return
        logger.debug("Sending %d products", len(body))
        self._send_json(200, body)

    def _send_health(self):
        broadcaster = getattr(self.server, "broadcaster", None)
        self._send_json(200, {
            "status": "ok",
            "products": len(self.server.store),
            "subscribers": len(broadcaster) if broadcaster is not None else 0,
        })

    def _send_cors_headers(self):
        self.send_header("Access-Control-Allow-Origin", "*")

    def _send_json(self, status: int, payload: Any):
        data = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self._send_cors_headers()
        self.end_headers()
        self.wfile.write(data)


class ApiServer:
    """Threaded HTTP server exposing the known-products store."""

    def __init__(
        self,
        store: KnownProductStore,
        host: str = API_HOST,
        port: int = API_PORT,
        broadcaster: Optional[Any] = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.host = host
        self.port = port
        self.server: Optional[ThreadingHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.server is not None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self) -> str:
        """Start serving on a background thread and return the base URL."""
        if self.server is not None:
            return self.url

        self.server = ThreadingHTTPServer((self.host, self.port), ProductsHandler)
        self.server.daemon_threads = True
        self.server.store = self.store
        self.server.broadcaster = self.broadcaster
        # port 0 binds an ephemeral port
        self.port = self.server.server_address[1]
        self.server_thread = threading.Thread(
            target=self.server.serve_forever, name="api-server", daemon=True
        )
        self.server_thread.start()
        logger.info("API server listening at %s/api/products", self.url)
        return self.url

    def stop(self):
        if self.server is None:
            return
        self.server.shutdown()
        self.server.server_close()
        self.server = None
        logger.info("API server stopped")


__all__ = ["ApiServer", "ProductsHandler"]
