# mcx/errors.py


class TrackerError(Exception):
    """Base class for all tracker failures."""


class DiscoveryError(TrackerError):
    """The expiry listing could not be fetched."""


class DiscoveryParseError(DiscoveryError):
    """The expiry listing was fetched but its structure is not what MCX usually sends."""


class FetchError(TrackerError):
    """Option chain for a single contract could not be fetched or read."""

    def __init__(self, message: str, symbol: str = "", expiry_date: str = ""):
        super().__init__(message)
        self.symbol = symbol
        self.expiry_date = expiry_date


class StoreError(TrackerError):
    """A database write or read failed."""
