from __future__ import annotations


class FeedError(Exception):
    """Base class for per-source feed failures."""


class TransportError(FeedError):
    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class InvalidFormat(FeedError):
    pass


class StorageQuotaExceeded(Exception):
    """The persistence backend refused a write because of its size limit."""
