"""
Error kinds raised by the feed engine and its remote collaborators.
"""

from typing import Any, Dict, Optional


class FeedError(Exception):
    """Base exception for feed reconciliation failures."""


class NotAuthenticated(FeedError):
    """Raised when an operation needs an active user and none is set."""


class InvalidSubmission(FeedError):
    """Raised when a submitted message has neither text nor an attachment."""


class SendFailed(FeedError):
    """Raised when the remote rejected a submit or the transport failed it."""

    def __init__(self, message: str, temporary_id: Optional[str] = None):
        super().__init__(message)
        self.temporary_id = temporary_id


class LoadFailed(FeedError):
    """Raised when a backfill page could not be fetched."""


class ConversionFailed(FeedError):
    """Raised when a remote item payload cannot be turned into a FeedItem."""

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.payload = payload


class RemoteError(FeedError):
    """Raised by a remote collaborator when a request fails."""


class EmptyFeedError(RemoteError):
    """Raised by a remote collaborator when history is requested for a feed with no messages."""
