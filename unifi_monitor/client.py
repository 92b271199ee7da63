"""Feed client: one logical subscription to the live product feed.

The client seeds its product list from the bulk endpoint, then holds a
websocket open and prepends each ``new-product`` event to that list.
When the socket drops it waits ``next_delay(attempt)`` and reconnects;
``attempt`` goes back to zero once a connection opens.  After a
reconnect the list is re-seeded so events missed while offline show up.
If the initial seed failed (server not up yet), every successful open
tries it again until one succeeds.

Run it directly to watch the feed from a terminal::

    python -m unifi_monitor.client
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import requests
from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from .config import (
    MONITOR_API_URL,
    MONITOR_FEED_URL,
    RECONNECT_BASE_DELAY,
    RECONNECT_MAX_DELAY,
    REQUEST_TIMEOUT_SECONDS,
)
from .errors import FetchError, ValidationError
from .messages import CONNECTED, NEW_PRODUCT, decode_message
from .models import Product
from .utils import get_http_session, retryable_request

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def next_delay(
    attempt: int,
    base_delay: float = RECONNECT_BASE_DELAY,
    max_delay: float = RECONNECT_MAX_DELAY,
) -> float:
    """Backoff before retry number ``attempt`` (0-based): base * 2**attempt, capped."""
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    # cap the exponent so huge attempt counts cannot overflow a float
    return min(base_delay * (2 ** min(attempt, 62)), max_delay)


@dataclass(frozen=True)
class ClientState:
    status: ConnectionStatus
    attempt_count: int
    products: Tuple[Product, ...]


@retryable_request
def _get(session: requests.Session, url: str, **kwargs: Any) -> requests.Response:
    return session.get(url, **kwargs)


class FeedClient:
    def __init__(
        self,
        api_url: str = MONITOR_API_URL,
        feed_url: str = MONITOR_FEED_URL,
        *,
        base_delay: float = RECONNECT_BASE_DELAY,
        max_delay: float = RECONNECT_MAX_DELAY,
        on_product: Optional[Callable[[Product], Any]] = None,
        on_status: Optional[Callable[[ConnectionStatus], Any]] = None,
        connect: Optional[Callable[[str], Any]] = None,
        fetch_products: Optional[Callable[[str], Any]] = None,
        wait: Optional[Callable[[float], Any]] = None,
        resync_on_reconnect: bool = True,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.api_url = api_url
        self.feed_url = feed_url
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.on_product = on_product
        self.on_status = on_status
        self.resync_on_reconnect = resync_on_reconnect
        self.timeout = timeout

        self.status = ConnectionStatus.DISCONNECTED
        self.attempt_count = 0
        self._products: List[Product] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._connection: Any = None
        self._has_connected = False
        self._seeded = False
        self._thread: Optional[threading.Thread] = None

        self._connect = connect or self._open_socket
        self._fetch_products = fetch_products or self._fetch_json
        self._wait = wait or self._stop.wait

    # ---- state ---------------------------------------------------------------

    @property
    def products(self) -> List[Product]:
        with self._lock:
            return list(self._products)

    @property
    def state(self) -> ClientState:
        with self._lock:
            return ClientState(self.status, self.attempt_count, tuple(self._products))

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self.status:
            return
        logger.info("Feed status: %s -> %s", self.status.value, status.value)
        self.status = status
        if self.on_status is not None:
            try:
                self.on_status(status)
            except Exception:
                logger.exception("Status callback failed")

    # ---- bulk seed -----------------------------------------------------------

    def _fetch_json(self, url: str) -> Any:
        session = get_http_session()
        try:
            return _get(session, url, timeout=self.timeout).json()
        finally:
            session.close()

    def seed(self) -> bool:
        """Replace the local list with the server's known products. False on failure."""
        try:
            raw = self._fetch_products(self.api_url)
        except (requests.RequestException, FetchError, ValueError) as e:
            logger.warning("Failed to fetch products from %s: %s", self.api_url, e)
            return False
        if not isinstance(raw, list):
            logger.warning("Unexpected product list payload from %s", self.api_url)
            return False

        products: List[Product] = []
        for record in raw:
            try:
                products.append(Product.from_dict(record))
            except ValidationError as e:
                logger.warning("Skipping malformed product from API: %s", e)
        with self._lock:
            self._products = products
        self._seeded = True
        logger.info("Seeded %d products", len(products))
        return True

    # ---- live feed -----------------------------------------------------------

    def handle_message(self, raw: Any) -> Optional[Product]:
        """Apply one feed frame. Returns the product merged, if any."""
        try:
            msg = decode_message(raw)
        except ValidationError as e:
            logger.warning("Ignoring feed frame: %s", e)
            return None

        if msg["type"] == CONNECTED:
            logger.info("Feed says: %s", msg.get("message", ""))
            return None
        if msg["type"] != NEW_PRODUCT:
            logger.debug("Ignoring feed frame of type %s", msg["type"])
            return None

        try:
            product = Product.from_dict(msg["product"])
        except ValidationError as e:
            logger.warning("Ignoring malformed product event: %s", e)
            return None

        # no dedup here; the server only announces ids it has never seen
        with self._lock:
            self._products.insert(0, product)
        if self.on_product is not None:
            try:
                self.on_product(product)
            except Exception:
                logger.exception("Product callback failed for %s", product.id)
        return product

    def _open_socket(self, url: str) -> Any:
        return ws_connect(url, open_timeout=self.timeout, close_timeout=self.timeout)

    def run_session(self) -> bool:
        """Connect once and consume frames until the connection ends. True if it opened."""
        if not self._has_connected and self.attempt_count == 0:
            self._set_status(ConnectionStatus.CONNECTING)
        try:
            conn = self._connect(self.feed_url)
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.warning("Feed connection to %s failed: %s", self.feed_url, e)
            return False

        reconnected = self._has_connected
        self._has_connected = True
        self._connection = conn
        with self._lock:
            self.attempt_count = 0
        self._set_status(ConnectionStatus.CONNECTED)
        # a failed initial seed is retried on every open until it succeeds
        if not self._seeded or (reconnected and self.resync_on_reconnect):
            self.seed()

        try:
            for raw in conn:
                self.handle_message(raw)
                if self._stop.is_set():
                    break
        except (OSError, WebSocketException) as e:
            logger.warning("Feed connection lost: %s", e)
        finally:
            self._connection = None
            try:
                conn.close()
            except Exception:
                logger.debug("Error closing feed connection", exc_info=True)
        return True

    def run(self) -> None:
        """Seed, then keep a connection open until ``stop`` is called."""
        self._stop.clear()
        self.seed()
        while not self._stop.is_set():
            self.run_session()
            if self._stop.is_set():
                break
            delay = next_delay(self.attempt_count, self.base_delay, self.max_delay)
            self._set_status(ConnectionStatus.RECONNECTING)
            with self._lock:
                self.attempt_count += 1
            logger.info("Reconnecting in %.1fs (attempt %d)", delay, self.attempt_count)
            self._wait(delay)
        self._set_status(ConnectionStatus.DISCONNECTED)

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name="feed-client", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        conn = self._connection
        if conn is not None:
            try:
                conn.close()
            except Exception:
                logger.debug("Error closing feed connection", exc_info=True)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)


def main() -> None:
    from .main import setup_logging

    setup_logging()

    def _print_product(product: Product) -> None:
        logger.info("NEW: %s | %s | %s", product.title, product.price_display() or "n/a", product.slug)

    client = FeedClient(on_product=_print_product)
    try:
        client.run()
    except KeyboardInterrupt:
        client.stop()


__all__ = ["ClientState", "ConnectionStatus", "FeedClient", "next_delay"]


if __name__ == "__main__":
    main()
