"""Error classification shared by the poller, store and broadcast layers.

None of these are fatal at runtime: each one is recovered at the boundary
that owns it (skip the category, drop the record, close the connection,
retry the write next cycle).  Only ``config.validate`` stops the process.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for all monitor errors."""


class FetchError(MonitorError):
    """Network, timeout or parse failure against the upstream store."""


class BuildTokenNotFound(FetchError):
    """The listing page did not contain a build token."""


class ValidationError(MonitorError):
    """A persisted or fetched record does not have the product shape."""


class DeliveryError(MonitorError):
    """A message could not be delivered to one subscriber."""


class PersistenceError(MonitorError):
    """The known-products snapshot could not be written."""


class StoreReadError(MonitorError):
    """The known-products store could not be read for a bulk request."""


__all__ = [
    "MonitorError",
    "FetchError",
    "BuildTokenNotFound",
    "ValidationError",
    "DeliveryError",
    "PersistenceError",
    "StoreReadError",
]
