"""Fetch-normalize-diff cycle.

One cycle resolves the build id, walks the configured categories in order
and treats every product id the store has not seen as new: it is stored,
published to the live feed and handed to the listeners right away, in
discovery order.  The snapshot is written once at the end of a cycle that
found something (or whose previous write failed).
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from .config import CATEGORY_KEYS
from .errors import FetchError, PersistenceError
from .models import Product
from .scraper import CatalogClient
from .store import KnownProductStore

logger = logging.getLogger(__name__)


class PollerState(Enum):
    IDLE = "idle"
    POLLING = "polling"


class CatalogPoller:
    def __init__(
        self,
        client: CatalogClient,
        store: KnownProductStore,
        publish: Callable[[Product], Any],
        categories: Optional[Sequence[str]] = None,
        listeners: Sequence[Callable[[Product], Any]] = (),
    ) -> None:
        self.client = client
        self.store = store
        self.publish = publish
        self.categories: List[str] = list(categories if categories is not None else CATEGORY_KEYS)
        self.listeners = list(listeners)
        self.state = PollerState.IDLE
        self.cycles = 0
        self._dirty = False
        self._cycle_lock = threading.Lock()

    def run_cycle(self) -> List[Product]:
        """Run one poll cycle and return the products discovered in it."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Previous poll cycle still running; skipping.")
            return []
        self.state = PollerState.POLLING
        try:
            return self._poll()
        finally:
            self.cycles += 1
            self.state = PollerState.IDLE
            self._cycle_lock.release()

    def _poll(self) -> List[Product]:
        new_products: List[Product] = []

        try:
            token = self.client.resolve_build_token()
        except FetchError as e:
            logger.error("Failed to resolve build id: %s", e)
            self._flush_pending(new_products)
            return new_products

        for category in self.categories:
            try:
                products = self.client.fetch_category(token, category)
            except Exception:
                logger.exception("Error fetching category %s; skipping it this cycle.", category)
                continue

            for product in products:
                stored = self.store.add(product)
                if stored is None:
                    continue
                new_products.append(stored)
                logger.info("New product found: %s (id=%s, category=%s)", stored.title, stored.id, category)
                self._announce(stored)

        self._flush_pending(new_products)
        return new_products

    def _announce(self, product: Product) -> None:
        try:
            self.publish(product)
        except Exception:
            logger.exception("Failed to publish product %s", product.id)

        for listener in self.listeners:
            try:
                listener(product)
            except Exception:
                logger.exception("Listener %r failed for product %s", listener, product.id)

    def _flush_pending(self, new_products: List[Product]) -> None:
        if not (new_products or self._dirty):
            logger.info("No new products this cycle.")
            return
        try:
            self.store.persist()
            self._dirty = False
        except PersistenceError:
            self._dirty = True
            logger.exception("Failed to save known products; will retry next cycle.")
        if new_products:
            logger.info("Discovered %d new products this cycle.", len(new_products))


__all__ = ["CatalogPoller", "PollerState"]
