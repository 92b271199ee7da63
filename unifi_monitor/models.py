"""Canonical product shape.

A :class:`Product` is what the store keeps, what the bulk endpoint returns
and what the live feed pushes.  The JSON form mirrors the upstream store's
own field names so the web client can render it unchanged::

    {
      "id": "...", "title": "...", "shortDescription": "...", "slug": "...",
      "thumbnail": {"url": "..."},
      "variants": [{"id": "...", "displayPrice": {"amount": 1000, "currency": "USD"}}],
      "discoveredAt": "2026-01-01T00:00:00+00:00"
    }

Prices are integer minor units (cents).
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Tuple

from .errors import ValidationError

DEFAULT_CURRENCY = "USD"

_CURRENCY_SYMBOLS = {"USD": "$", "CAD": "$", "AUD": "$", "EUR": "€", "GBP": "£"}


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(tz=_dt.timezone.utc)


def parse_timestamp(value: str) -> _dt.datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    ts = _dt.datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=_dt.timezone.utc)
    return ts


@dataclass(frozen=True)
class Variant:
    variant_id: str
    price_amount: int = 0
    currency_code: str = DEFAULT_CURRENCY

    def to_dict(self) -> dict:
        return {
            "id": self.variant_id,
            "displayPrice": {"amount": self.price_amount, "currency": self.currency_code},
        }


@dataclass(frozen=True)
class Product:
    id: str
    title: str
    slug: str
    short_description: str = ""
    thumbnail_url: str = ""
    variants: Tuple[Variant, ...] = field(default_factory=tuple)
    # Assigned once by the store at first insertion.
    discovered_at: Optional[_dt.datetime] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Product":
        """Build a product from its JSON form, raising ValidationError if malformed."""
        if not isinstance(data, Mapping):
            raise ValidationError(f"record is not an object: {type(data).__name__}")

        for key in ("id", "title", "slug"):
            val = data.get(key)
            if not isinstance(val, str) or not val:
                raise ValidationError(f"{key!r} must be a non-empty string (got {val!r})")

        desc = data.get("shortDescription", "")
        if not isinstance(desc, str):
            raise ValidationError("'shortDescription' must be a string")

        thumb = data.get("thumbnail")
        if not isinstance(thumb, Mapping) or not isinstance(thumb.get("url"), str):
            raise ValidationError(f"'thumbnail.url' must be a string (id={data['id']})")

        raw_variants = data.get("variants")
        if not isinstance(raw_variants, list):
            raise ValidationError(f"'variants' must be a list (id={data['id']})")
        variants = tuple(_variant_from_dict(v, data["id"]) for v in raw_variants)

        discovered_at = None
        raw_ts = data.get("discoveredAt")
        if raw_ts is not None:
            if not isinstance(raw_ts, str):
                raise ValidationError(f"'discoveredAt' must be a string (id={data['id']})")
            try:
                discovered_at = parse_timestamp(raw_ts)
            except ValueError as e:
                raise ValidationError(f"bad 'discoveredAt' {raw_ts!r} (id={data['id']})") from e

        return cls(
            id=data["id"],
            title=data["title"],
            slug=data["slug"],
            short_description=desc,
            thumbnail_url=thumb["url"],
            variants=variants,
            discovered_at=discovered_at,
        )

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "title": self.title,
            "shortDescription": self.short_description,
            "slug": self.slug,
            "thumbnail": {"url": self.thumbnail_url},
            "variants": [v.to_dict() for v in self.variants],
        }
        if self.discovered_at is not None:
            out["discoveredAt"] = self.discovered_at.isoformat()
        return out

    def with_discovered_at(self, when: _dt.datetime) -> "Product":
        return replace(self, discovered_at=when)

    def product_url(self, template: str) -> str:
        return template.format(slug=self.slug)

    def price_display(self) -> Optional[str]:
        """Format the first variant's price, or None when there are no variants."""
        if not self.variants:
            return None
        v = self.variants[0]
        major, minor = divmod(abs(v.price_amount), 100)
        sign = "-" if v.price_amount < 0 else ""
        symbol = _CURRENCY_SYMBOLS.get(v.currency_code)
        if symbol:
            return f"{sign}{symbol}{major}.{minor:02d}"
        return f"{sign}{major}.{minor:02d} {v.currency_code}"


def _variant_from_dict(data: Any, product_id: str) -> Variant:
    if not isinstance(data, Mapping):
        raise ValidationError(f"variant is not an object (id={product_id})")
    vid = data.get("id", "")
    price = data.get("displayPrice")
    if not isinstance(vid, str) or not isinstance(price, Mapping):
        raise ValidationError(f"malformed variant (id={product_id})")
    amount = price.get("amount")
    currency = price.get("currency")
    # bool is an int subclass; reject it explicitly
    if not isinstance(amount, int) or isinstance(amount, bool) or not isinstance(currency, str):
        raise ValidationError(f"malformed variant price (id={product_id})")
    return Variant(variant_id=vid, price_amount=amount, currency_code=currency)


__all__ = [
    "DEFAULT_CURRENCY",
    "Product",
    "Variant",
    "parse_timestamp",
    "utc_now",
]
