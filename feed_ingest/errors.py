"""Exceptions raised while ingesting a feed.

Every error here is scoped to a single feed. The fetch executor catches them,
records ``str(exc)`` on the feed and moves on.
"""

from __future__ import annotations


class FeedError(Exception):
    """Base class for feed-scoped ingestion failures."""


class DecodeError(FeedError):
    """The document could not be turned into raw entries."""


class EmptyDocumentError(DecodeError):
    pass


class UnsupportedFormatError(DecodeError):
    pass


class MalformedDocumentError(DecodeError):
    pass


class FetchError(FeedError):
    """The document could not be retrieved."""


class TransportError(FetchError):
    pass


class HTTPStatusError(FetchError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        status = f"{status_code} {reason}".strip()
        super().__init__(f"feed status: {status}")


class StorageError(FeedError):
    """The persistence layer rejected an operation."""
