from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, List, Optional

import requests
from bs4 import BeautifulSoup
from tenacity import stop_after_attempt

from .config import (
    DATA_URL_TEMPLATE,
    HOME_URL,
    REQUEST_TIMEOUT_SECONDS,
    STORE_LANGUAGE,
    STORE_REGION,
)
from .errors import BuildTokenNotFound, FetchError, ValidationError
from .models import DEFAULT_CURRENCY, Product
from .utils import HTTPError, get_http_session, retryable_request

logger = logging.getLogger(__name__)

# The static manifest path carries the build id:
#   https://store.ui.com/_next/static/<build_id>/_ssgManifest.js
BUILD_ID_PATTERN = re.compile(r"/_next/static/([A-Za-z0-9_-]+)/_ssgManifest\.js")


@retryable_request
def _get(session: requests.Session, url: str, **kwargs: Any) -> requests.Response:
    """Thin wrapper around session.get with retry policy from utils.retryable_request."""
    return session.get(url, **kwargs)


def _first_nonempty(*vals) -> Optional[str]:
    for v in vals:
        if v is not None and not isinstance(v, (dict, list)):
            s = str(v).strip()
            if s:
                return s
    return None


def _to_minor_units(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return 0


def extract_build_token(html: str) -> Optional[str]:
    """
    Find the build id in the listing page markup.

    Strategy (in order):
      1) <script src=".../_next/static/<id>/_ssgManifest.js">
      2) the inline __NEXT_DATA__ JSON blob ("buildId")
      3) the manifest path anywhere in the raw markup
    """
    soup = BeautifulSoup(html or "", "html.parser")

    for tag in soup.find_all("script", src=True):
        m = BUILD_ID_PATTERN.search(tag["src"])
        if m:
            return m.group(1)

    next_data = soup.find("script", id="__NEXT_DATA__")
    if next_data is not None and next_data.string:
        try:
            parsed = json.loads(next_data.string)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            build_id = _first_nonempty(parsed.get("buildId"))
            if build_id:
                return build_id

    m = BUILD_ID_PATTERN.search(html or "")
    return m.group(1) if m else None


def _iter_raw_products(data: Any) -> Iterable[Any]:
    """Yield raw product records from a category response, in response order."""
    if not isinstance(data, dict):
        return
    page_props = data.get("pageProps")
    if not isinstance(page_props, dict):
        return
    sub_categories = page_props.get("subCategories")
    if not isinstance(sub_categories, list):
        return
    for sc in sub_categories:
        if not isinstance(sc, dict):
            continue
        products = sc.get("products")
        if isinstance(products, list):
            yield from products


def normalize_product(raw: Any) -> Product:
    """
    Map one upstream product record onto the canonical shape.

    Absent nested fields get defaults (empty description, empty thumbnail,
    zero price, USD) so validation only ever sees present-but-empty values.
    Raises ValidationError when id/title/slug are missing.
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"product record is not an object: {type(raw).__name__}")

    thumb = raw.get("thumbnail")
    thumb_url = _first_nonempty(
        thumb.get("url") if isinstance(thumb, dict) else None,
        raw.get("thumbnailUrl"),
    ) or ""

    variants: list[dict] = []
    raw_variants = raw.get("variants")
    for v in raw_variants if isinstance(raw_variants, list) else []:
        if not isinstance(v, dict):
            continue
        price = v.get("displayPrice")
        if not isinstance(price, dict):
            price = {}
        variants.append({
            "id": _first_nonempty(v.get("id"), v.get("variantId")) or "",
            "displayPrice": {
                "amount": _to_minor_units(price.get("amount", v.get("amount", 0))),
                "currency": _first_nonempty(price.get("currency"), v.get("currency")) or DEFAULT_CURRENCY,
            },
        })

    desc = raw.get("shortDescription")
    record = {
        "id": _first_nonempty(raw.get("id")) or "",
        "title": _first_nonempty(raw.get("title")) or "",
        "shortDescription": desc if isinstance(desc, str) else "",
        "slug": _first_nonempty(raw.get("slug")) or "",
        "thumbnail": {"url": thumb_url},
        "variants": variants,
    }
    return Product.from_dict(record)


class CatalogClient:
    """Fetches the listing page and per-category product JSON from the store."""

    def __init__(
        self,
        home_url: str = HOME_URL,
        data_url_template: str = DATA_URL_TEMPLATE,
        *,
        region: str = STORE_REGION,
        language: str = STORE_LANGUAGE,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        attempts: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.home_url = home_url
        self.data_url_template = data_url_template
        self.region = region
        self.language = language
        self.timeout = timeout
        self.session = session or get_http_session()
        self._get = _get.retry_with(stop=stop_after_attempt(attempts)) if attempts else _get

    def close(self) -> None:
        self.session.close()

    def resolve_build_token(self) -> str:
        """Return the current build id. Raises FetchError / BuildTokenNotFound."""
        try:
            resp = self._get(self.session, self.home_url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Listing page request failed: {e}") from e

        token = extract_build_token(resp.text)
        if not token:
            raise BuildTokenNotFound(f"No build id found in {self.home_url}")
        logger.info("Resolved build id %s", token)
        return token

    def category_url(self, token: str) -> str:
        return self.data_url_template.format(build_id=token)

    def fetch_category(self, token: str, category: str) -> List[Product]:
        """
        Fetch and normalize one category.

        Transport failures (connection errors, timeouts) raise FetchError.
        An error status or an unparseable body degrades to an empty list.
        Records that fail normalization are dropped with a warning.
        """
        url = self.category_url(token)
        params = {"category": category, "store": self.region, "language": self.language}
        logger.debug("Category fetch: %s %s", url, params)
        try:
            resp = self._get(self.session, url, params=params, timeout=self.timeout)
        except HTTPError as e:
            logger.warning("Category %s returned an error status (%s); treating as empty.", category, e)
            return []
        except requests.RequestException as e:
            raise FetchError(f"Category {category} request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Category %s returned a non-JSON body; treating as empty.", category)
            return []

        products: List[Product] = []
        for raw in _iter_raw_products(data):
            try:
                products.append(normalize_product(raw))
            except ValidationError as e:
                logger.warning("Dropping malformed product in %s: %s", category, e)
        logger.debug("Category %s: %d products", category, len(products))
        return products


__all__ = ["BUILD_ID_PATTERN", "CatalogClient", "extract_build_token", "normalize_product"]
