"""Configuration loader.

Reads environment variables and `.env` to configure the service.
"""

from __future__ import annotations

import os
from typing import List, Optional
from pathlib import Path

from dotenv import load_dotenv

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


def _get_list(name: str, default: str = "") -> list[str]:
    raw = _get_env(name, default) or ""
    return [s.strip() for s in raw.split(",") if s.strip()]


# ---- Upstream store ----------------------------------------------------------

# Listing page whose markup embeds the current build token.
HOME_URL: str = _get_env("HOME_URL", "https://store.ui.com/us/en")

# Per-category JSON endpoint; {build_id} is substituted each cycle.
DATA_URL_TEMPLATE: str = _get_env(
    "DATA_URL_TEMPLATE", "https://store.ui.com/_next/data/{build_id}/us/en.json"
)

# Deep link to a product page; {slug} is substituted.
PRODUCT_URL_TEMPLATE: str = _get_env(
    "PRODUCT_URL_TEMPLATE", "https://store.ui.com/us/en/products/{slug}"
)

STORE_REGION: str = _get_env("STORE_REGION", "us")
STORE_LANGUAGE: str = _get_env("STORE_LANGUAGE", "en")

DEFAULT_CATEGORY_KEYS = (
    "all-switching",
    "all-unifi-cloud-gateways",
    "all-wifi",
    "all-cameras-nvrs",
    "all-door-access",
    "all-cloud-keys-gateways",
    "all-power-tech",
    "all-integrations",
    "accessories-cables-dacs",
)

# Comma-separated, processed in this order every cycle.
CATEGORY_KEYS: List[str] = _get_list("CATEGORY_KEYS") or list(DEFAULT_CATEGORY_KEYS)

# ---- Timing ------------------------------------------------------------------

POLL_INTERVAL_SECONDS: float = _parse_float(_get_env("POLL_INTERVAL_SECONDS"), 30.0)
PING_INTERVAL_SECONDS: float = _parse_float(_get_env("PING_INTERVAL_SECONDS"), 30.0)

# Applied to every outbound request.
REQUEST_TIMEOUT_SECONDS: float = _parse_float(_get_env("REQUEST_TIMEOUT_SECONDS"), 10.0)

# Attempts for transient network errors (>= 500, 429, connection errors).
FETCH_ATTEMPTS: int = _parse_int(_get_env("FETCH_ATTEMPTS"), 3)

# ---- Persistence -------------------------------------------------------------

PRODUCTS_FILE: str = _get_env("PRODUCTS_FILE", "products.json")

# ---- Servers -----------------------------------------------------------------

API_HOST: str = _get_env("API_HOST", "0.0.0.0")
API_PORT: int = _parse_int(_get_env("API_PORT"), 3001)

FEED_HOST: str = _get_env("FEED_HOST", "0.0.0.0")
FEED_PORT: int = _parse_int(_get_env("FEED_PORT"), 3002)

# Messages buffered per subscriber before it is considered too slow.
SUBSCRIBER_QUEUE_SIZE: int = _parse_int(_get_env("SUBSCRIBER_QUEUE_SIZE"), 100)

# ---- Notifications -----------------------------------------------------------

# Optional. When set, each new product is also posted to Discord.
DISCORD_WEBHOOK_URL: Optional[str] = _get_env("DISCORD_WEBHOOK_URL")

# ---- Logging -----------------------------------------------------------------

LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO")
LOG_FILE: Optional[str] = _get_env("LOG_FILE")

# ---- Feed client -------------------------------------------------------------

MONITOR_API_URL: str = _get_env("MONITOR_API_URL", "http://127.0.0.1:3001/api/products")
MONITOR_FEED_URL: str = _get_env("MONITOR_FEED_URL", "ws://127.0.0.1:3002/")
RECONNECT_BASE_DELAY: float = _parse_float(_get_env("RECONNECT_BASE_DELAY"), 1.0)
RECONNECT_MAX_DELAY: float = _parse_float(_get_env("RECONNECT_MAX_DELAY"), 10.0)


# ---- Validation --------------------------------------------------------------

def validate() -> None:
    """Validate configuration. Raises RuntimeError on unusable settings."""
    problems: list[str] = []
    if not CATEGORY_KEYS:
        problems.append("CATEGORY_KEYS must list at least one category")
    if POLL_INTERVAL_SECONDS <= 0:
        problems.append("POLL_INTERVAL_SECONDS must be positive")
    if PING_INTERVAL_SECONDS <= 0:
        problems.append("PING_INTERVAL_SECONDS must be positive")
    if REQUEST_TIMEOUT_SECONDS <= 0:
        problems.append("REQUEST_TIMEOUT_SECONDS must be positive")
    if FETCH_ATTEMPTS < 1:
        problems.append("FETCH_ATTEMPTS must be at least 1")
    if SUBSCRIBER_QUEUE_SIZE < 1:
        problems.append("SUBSCRIBER_QUEUE_SIZE must be at least 1")
    for name, port in (("API_PORT", API_PORT), ("FEED_PORT", FEED_PORT)):
        if not 0 < port < 65536:
            problems.append(f"{name} must be between 1 and 65535")
    if API_PORT == FEED_PORT and API_HOST == FEED_HOST:
        problems.append("API_PORT and FEED_PORT must differ")
    if "{build_id}" not in DATA_URL_TEMPLATE:
        problems.append("DATA_URL_TEMPLATE must contain {build_id}")
    if problems:
        raise RuntimeError("Invalid configuration: " + "; ".join(problems))


__all__ = [
    "HOME_URL",
    "DATA_URL_TEMPLATE",
    "PRODUCT_URL_TEMPLATE",
    "STORE_REGION",
    "STORE_LANGUAGE",
    "DEFAULT_CATEGORY_KEYS",
    "CATEGORY_KEYS",
    "POLL_INTERVAL_SECONDS",
    "PING_INTERVAL_SECONDS",
    "REQUEST_TIMEOUT_SECONDS",
    "FETCH_ATTEMPTS",
    "PRODUCTS_FILE",
    "API_HOST",
    "API_PORT",
    "FEED_HOST",
    "FEED_PORT",
    "SUBSCRIBER_QUEUE_SIZE",
    "DISCORD_WEBHOOK_URL",
    "LOG_LEVEL",
    "LOG_FILE",
    "MONITOR_API_URL",
    "MONITOR_FEED_URL",
    "RECONNECT_BASE_DELAY",
    "RECONNECT_MAX_DELAY",
    "validate",
]
