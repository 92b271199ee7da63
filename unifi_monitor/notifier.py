"""Discord webhook notifier.

Sends one embed per newly discovered product to a Discord channel via
webhook.  Optional: when DISCORD_WEBHOOK_URL is unset nothing is sent.
Failures are logged by the caller and never affect the live feed.
"""
from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import DISCORD_WEBHOOK_URL, PRODUCT_URL_TEMPLATE, REQUEST_TIMEOUT_SECONDS
from .models import Product, utc_now
from .utils import get_http_session, retryable_request

logger = logging.getLogger(__name__)

EMBED_COLOR = 15277667
FOOTER_TEXT = "UniFi Store Monitor"


@retryable_request
def _post(session: requests.Session, url: str, **kwargs) -> requests.Response:
    return session.post(url, **kwargs)


def _build_embed(product: Product, product_url_template: str = PRODUCT_URL_TEMPLATE) -> dict:
    price = product.price_display() or "Price unavailable"
    variant_id = product.variants[0].variant_id if product.variants else ""

    embed = {
        "title": product.title or "Unknown product",
        "color": EMBED_COLOR,
        "url": product.product_url(product_url_template),
        "timestamp": (product.discovered_at or utc_now()).isoformat(),
        "author": {"name": "New Product Alert!"},
        "description": product.short_description or "",
        "fields": [
            {"name": "Variant", "value": variant_id or "n/a", "inline": True},
            {"name": "Price", "value": price, "inline": True},
        ],
        "footer": {"text": FOOTER_TEXT},
    }

    img_url = (product.thumbnail_url or "").strip()
    if img_url:
        embed["thumbnail"] = {"url": img_url}
    return embed


def send_product_event(
    product: Product,
    webhook_url: Optional[str] = None,
    session: Optional[requests.Session] = None,
    *,
    product_url_template: str = PRODUCT_URL_TEMPLATE,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> bool:
    """Post one product to Discord. Returns False when no webhook is configured."""
    if webhook_url is None:
        webhook_url = DISCORD_WEBHOOK_URL
    if not webhook_url:
        logger.debug("Discord webhook URL is not configured; skipping %s.", product.id)
        return False

    close_session = False
    if session is None:
        session = get_http_session()
        close_session = True

    try:
        payload = {
            "username": FOOTER_TEXT,
            "embeds": [_build_embed(product, product_url_template)],
        }
        logger.info("Sending Discord notification for product %s (id=%s)", product.title, product.id)
        _post(session, webhook_url, json=payload, timeout=timeout)
        return True
    finally:
        if close_session:
            session.close()


class DiscordNotifier:
    """Poller listener that forwards new products to a webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        product_url_template: str = PRODUCT_URL_TEMPLATE,
    ) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else DISCORD_WEBHOOK_URL
        self.session = session or get_http_session()
        self.product_url_template = product_url_template

    def __call__(self, product: Product) -> None:
        send_product_event(
            product,
            webhook_url=self.webhook_url,
            session=self.session,
            product_url_template=self.product_url_template,
        )

    def close(self) -> None:
        self.session.close()


__all__ = ["DiscordNotifier", "send_product_event"]
