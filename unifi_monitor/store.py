"""Known-products store backed by a JSON snapshot file.

The in-memory map (id -> Product) is authoritative.  The snapshot is read
once at startup and rewritten wholesale on every persist.  All access goes
through one lock so the poller's writes, the API's bulk reads and the
persist routine never observe a partially-updated map.
"""

from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import PRODUCTS_FILE
from .errors import PersistenceError, StoreReadError, ValidationError
from .models import Product, utc_now

logger = logging.getLogger(__name__)


class KnownProductStore:
    def __init__(
        self,
        path: str | os.PathLike = PRODUCTS_FILE,
        clock: Optional[Callable[[], _dt.datetime]] = None,
    ) -> None:
        self.path = Path(path)
        self._clock = clock or utc_now
        self._products: Dict[str, Product] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._products)

    def load(self) -> int:
        """
        Populate the store from the snapshot file and return the number loaded.
        Invalid records are logged and skipped; a missing or unreadable file
        loads as empty.
        """
        if not self.path.exists():
            logger.info("Snapshot %s not found; starting with an empty set.", self.path)
            return 0

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except (OSError, ValueError):
            logger.exception("Failed to read snapshot %s; starting with an empty set.", self.path)
            return 0

        if not isinstance(raw, list):
            logger.error("Snapshot %s is not a JSON array; ignoring it.", self.path)
            return 0

        loaded = 0
        with self._lock:
            for record in raw:
                try:
                    product = Product.from_dict(record)
                except ValidationError as e:
                    logger.error("Invalid product in %s: %s", self.path, e)
                    continue
                if product.discovered_at is None:
                    product = product.with_discovered_at(self._clock())
                self._products[product.id] = product
                loaded += 1
        logger.info("Loaded %d known products", loaded)
        return loaded

    def contains(self, product_id: str) -> bool:
        with self._lock:
            return product_id in self._products

    def upsert(self, product: Product) -> Product:
        """
        Insert or replace a product and return the stored copy.
        ``discovered_at`` is assigned on first insertion and kept on replace.
        """
        with self._lock:
            prior = self._products.get(product.id)
            if prior is not None and prior.discovered_at is not None:
                stored = product.with_discovered_at(prior.discovered_at)
            elif product.discovered_at is None:
                stored = product.with_discovered_at(self._clock())
            else:
                stored = product
            self._products[product.id] = stored
            return stored

    def add(self, product: Product) -> Optional[Product]:
        """Insert only if the id is unknown. Returns the stored copy, or None if known."""
        with self._lock:
            if product.id in self._products:
                return None
            return self.upsert(product)

    def snapshot_all(self) -> List[Product]:
        """All known products, most recently discovered first."""
        try:
            with self._lock:
                # newest insertion first among equal timestamps
                items = list(self._products.values())[::-1]
            return sorted(items, key=_discovered_key, reverse=True)
        except Exception as e:
            raise StoreReadError(f"Failed to read known products: {e}") from e

    def persist(self) -> int:
        """Rewrite the snapshot with the full current set. Returns the count written."""
        with self._lock:
            records = [p.to_dict() for p in self._products.values()]
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(
                    prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent)
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        json.dump(records, fh, indent=2)
                    os.replace(tmp, self.path)
                except BaseException:
                    if os.path.exists(tmp):
                        os.unlink(tmp)
                    raise
            except (OSError, TypeError, ValueError) as e:
                raise PersistenceError(f"Failed to write {self.path}: {e}") from e
        logger.info("Saved %d known products to %s", len(records), self.path)
        return len(records)


def _discovered_key(product: Product) -> _dt.datetime:
    return product.discovered_at or _dt.datetime.min.replace(tzinfo=_dt.timezone.utc)


__all__ = ["KnownProductStore"]
