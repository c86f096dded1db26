"""Exception types raised by the crawler."""

from __future__ import annotations


class GlobecrawlError(RuntimeError):
    """Base class for every error the crawler surfaces to the operator."""


class ConfigError(GlobecrawlError):
    """Raised when configuration or an input data file is missing or malformed."""


class IdentityError(GlobecrawlError):
    """Base class for network identity failures that abort a pass."""


class IdentityLookupError(IdentityError):
    """Raised when the current network identity cannot be read at all."""


class VpnClientError(IdentityError):
    """Raised when the VPN client executable cannot be started."""


class PageLoadError(GlobecrawlError):
    """Raised when a catalog page fails to load after retries."""

    def __init__(
        self,
        *,
        url: str,
        region: str | None = None,
        item: str | int | None = None,
    ) -> None:
        self.url = url
        self.region = region
        self.item = item
        detail = f"Failed to load {url}"
        if region:
            detail += f" region={region}"
        if item is not None:
            detail += f" item={item}"
        super().__init__(detail)


class PersistenceError(GlobecrawlError):
    """Raised when a snapshot cannot be written to durable storage."""


class StoreCorruptError(PersistenceError):
    """Raised when an existing snapshot cannot be parsed."""
