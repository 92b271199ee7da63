"""Live feed websocket server.

Thin transport wrapper: every inbound websocket connection is handed to
``Broadcaster.serve`` on its own thread.  Keepalive pings are left to the
broadcaster's liveness sweep, so the library's own keepalive is disabled.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from websockets.sync.server import Server, serve

from .broadcaster import Broadcaster
from .config import FEED_HOST, FEED_PORT

logger = logging.getLogger(__name__)


class FeedServer:
    def __init__(
        self,
        broadcaster: Broadcaster,
        host: str = FEED_HOST,
        port: int = FEED_PORT,
        close_timeout: float = 5.0,
    ) -> None:
        self.broadcaster = broadcaster
        self.host = host
        self.port = port
        self.close_timeout = close_timeout
        self.server: Optional[Server] = None
        self.server_thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/"

    def start(self) -> str:
        """Start accepting connections on a background thread and return the feed URL."""
        if self.server is not None:
            return self.url

        self.server = serve(
            self.broadcaster.serve,
            self.host,
            self.port,
            ping_interval=None,
            close_timeout=self.close_timeout,
        )
        # port 0 binds an ephemeral port
        self.port = self.server.socket.getsockname()[1]
        self.server_thread = threading.Thread(
            target=self.server.serve_forever, name="feed-server", daemon=True
        )
        self.server_thread.start()
        logger.info("Live feed listening at %s", self.url)
        return self.url

    def stop(self, timeout: float = 5.0) -> None:
        if self.server is None:
            return
        self.broadcaster.close_all()
        if not self.broadcaster.wait_closed(timeout):
            logger.warning("Some subscriber connections did not close within %ss", timeout)
        self.server.shutdown()
        if self.server_thread is not None:
            self.server_thread.join(timeout)
        self.server = None
        logger.info("Live feed stopped")


__all__ = ["FeedServer"]
