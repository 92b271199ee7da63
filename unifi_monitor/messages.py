"""Live feed message shapes.

Server to client only:
  {"type": "connected", "message": "..."}     once, right after the socket opens
  {"type": "new-product", "product": {...}}   per discovered product
"""

from __future__ import annotations

import json
from typing import Any, Dict

from .errors import ValidationError
from .models import Product

CONNECTED = "connected"
NEW_PRODUCT = "new-product"

DEFAULT_GREETING = "Connected to product feed"


def connected_message(text: str = DEFAULT_GREETING) -> str:
    return json.dumps({"type": CONNECTED, "message": text})


def new_product_message(product: Product) -> str:
    return json.dumps({"type": NEW_PRODUCT, "product": product.to_dict()})


def decode_message(raw: Any) -> Dict[str, Any]:
    """Parse one feed frame into a dict with at least a ``type`` key."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"feed frame is not JSON: {raw!r:.80}") from e
    if not isinstance(msg, dict) or not isinstance(msg.get("type"), str):
        raise ValidationError(f"feed frame has no type: {raw!r:.80}")
    if msg["type"] == NEW_PRODUCT and not isinstance(msg.get("product"), dict):
        raise ValidationError("new-product frame without a product object")
    return msg


__all__ = [
    "CONNECTED",
    "NEW_PRODUCT",
    "DEFAULT_GREETING",
    "connected_message",
    "new_product_message",
    "decode_message",
]
