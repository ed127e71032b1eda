"""Error taxonomy for the news monitor."""

from typing import Iterable


class NewsMonitorError(Exception):
    """Base class for every error raised by the news monitor."""


class NetworkError(NewsMonitorError):
    """Raised when the listing page cannot be fetched (timeout, refused, HTTP >= 500)."""


class ParseError(NewsMonitorError):
    """Raised when the listing page markup cannot be turned into news items."""


class StorageError(NewsMonitorError):
    """Raised when the seen-news file cannot be read or written."""


class DeliveryError(NewsMonitorError):
    """Raised when a notification cannot be delivered."""


class ConfigError(NewsMonitorError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str, missing: Iterable[str] = ()) -> None:
        self.missing = list(missing)
        if self.missing:
            message = f"{message}: {', '.join(self.missing)}"
        super().__init__(message)
