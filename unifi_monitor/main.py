from __future__ import annotations

import logging
import signal
import threading
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from . import config
from .api import ApiServer
from .broadcaster import Broadcaster
from .feed import FeedServer
from .notifier import DiscordNotifier
from .poller import CatalogPoller
from .scheduler import Scheduler
from .scraper import CatalogClient
from .store import KnownProductStore

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

POLL_TASK = "poller"
SWEEP_TASK = "liveness-sweep"


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if config.LOG_FILE:
        root = logging.getLogger()
        if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
            try:
                fh = RotatingFileHandler(config.LOG_FILE, maxBytes=2 * 1024 * 1024, backupCount=3)
                fh.setFormatter(logging.Formatter(LOG_FORMAT))
                fh.setLevel(level)
                root.addHandler(fh)
            except OSError as e:
                root.warning("Failed to initialize file logging: %s", e)


class MonitorService:
    """Wires the store, poller, broadcaster and both servers together."""

    def __init__(
        self,
        store: KnownProductStore,
        poller: CatalogPoller,
        broadcaster: Broadcaster,
        api: ApiServer,
        feed: FeedServer,
        poll_interval: float = config.POLL_INTERVAL_SECONDS,
        ping_interval: float = config.PING_INTERVAL_SECONDS,
    ) -> None:
        self.store = store
        self.poller = poller
        self.broadcaster = broadcaster
        self.api = api
        self.feed = feed
        self.poll_interval = poll_interval
        self.scheduler = Scheduler()
        self.scheduler.every(poll_interval, poller.run_cycle, name=POLL_TASK)
        self.scheduler.every(ping_interval, broadcaster.tick, name=SWEEP_TASK)

    def poll_now(self) -> None:
        """Start a poll cycle without waiting for the next interval."""
        self.scheduler.kick(POLL_TASK)

    def start(self) -> None:
        logger = logging.getLogger(__name__)
        logger.info("Loading known products from %s…", self.store.path)
        self.store.load()
        self.api.start()
        self.feed.start()
        logger.info(
            "Starting product monitor for %d categories (poll every %ss).",
            len(self.poller.categories),
            self.poll_interval,
        )
        self.scheduler.start()
        self.poll_now()

    def stop(self) -> None:
        logger = logging.getLogger(__name__)
        logger.info("Shutting down…")
        self.scheduler.stop()
        self.feed.stop()
        self.api.stop()
        try:
            self.store.persist()
        except Exception:
            logger.exception("Failed to save products during shutdown")
        logger.info("Shutdown complete")


def build_service(
    products_file: Optional[str] = None,
    categories: Optional[List[str]] = None,
    api_port: Optional[int] = None,
    feed_port: Optional[int] = None,
) -> MonitorService:
    store = KnownProductStore(products_file or config.PRODUCTS_FILE)
    broadcaster = Broadcaster(queue_size=config.SUBSCRIBER_QUEUE_SIZE)
    client = CatalogClient(config.HOME_URL, config.DATA_URL_TEMPLATE)

    listeners = []
    if config.DISCORD_WEBHOOK_URL:
        listeners.append(DiscordNotifier(config.DISCORD_WEBHOOK_URL))
    else:
        logging.getLogger(__name__).info("Discord notifications disabled.")

    poller = CatalogPoller(
        client,
        store,
        publish=broadcaster.publish,
        categories=categories or config.CATEGORY_KEYS,
        listeners=listeners,
    )
    api = ApiServer(
        store,
        config.API_HOST,
        config.API_PORT if api_port is None else api_port,
        broadcaster=broadcaster,
    )
    feed = FeedServer(
        broadcaster,
        config.FEED_HOST,
        config.FEED_PORT if feed_port is None else feed_port,
    )
    return MonitorService(store, poller, broadcaster, api, feed)


def main() -> None:
    """Initialise and run the monitor until SIGINT/SIGTERM."""
    config.validate()
    setup_logging()

    service = build_service()
    stop_event = threading.Event()

    def _on_signal(signum, frame):
        logging.getLogger(__name__).info("Received signal %s", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    # SIGUSR1 forces an immediate poll (not available on Windows)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, lambda signum, frame: service.poll_now())

    service.start()
    try:
        stop_event.wait()
    finally:
        service.stop()


if __name__ == "__main__":
    main()
