"""
UniFi store new-product monitor.

This package polls the store's category listings for products it has not
seen before, keeps the known set in a JSON snapshot, and pushes each new
product to connected clients over a websocket feed (with an optional
Discord alert).
"""

__version__ = "1.0.0"

__all__ = [
    "api",
    "broadcaster",
    "client",
    "config",
    "errors",
    "feed",
    "main",
    "messages",
    "models",
    "notifier",
    "poller",
    "scheduler",
    "scraper",
    "store",
    "utils",
]
