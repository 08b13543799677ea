"""
Abstract remote feed interface.

Defines the contract the feed engine expects from the service that owns the
authoritative feeds (a chat backend reached over Socket.IO, or an in-process
stand-in).
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from feed.models import ChangeBatch, PageResult

logger = logging.getLogger(__name__)

BatchHandler = Callable[[ChangeBatch], Awaitable[None]]


class Subscription:
    """Handle for a change subscription; cancel() stops delivery to the handler."""

    def __init__(self, feed_id: str, on_cancel: Optional[Callable[[], None]] = None):
        self.feed_id = feed_id
        self._on_cancel = on_cancel
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel:
            self._on_cancel()
        logger.debug(f"Subscription to feed '{self.feed_id}' cancelled")


class FeedRemote(ABC):
    """
    Abstract base class for remote feed collaborators.

    Failures are reported by raising feed.errors.RemoteError (or
    EmptyFeedError when history is requested for a feed with no messages).
    """

    @abstractmethod
    async def subscribe(self, feed_id: str, on_batch: BatchHandler) -> Subscription:
        """
        Start delivering change batches for a feed.

        Args:
            feed_id: Feed to observe
            on_batch: Coroutine function called with each ChangeBatch

        Returns:
            Subscription handle
        """
        pass

    @abstractmethod
    async def send_item(self, feed_id: str, text: str, attachment_url: Optional[str] = None,
                        correlation_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Submit a new item.

        Args:
            feed_id: Target feed
            text: Message text
            attachment_url: Optional attachment reference (already uploaded)
            correlation_id: Client-side id the remote may echo on the confirmed item

        Returns:
            The confirmed raw item if the remote returns one, else None
        """
        pass

    @abstractmethod
    async def load_previous_page(self, feed_id: str, limit: int,
                                 before_id: Optional[str] = None) -> PageResult:
        """
        Load items older than ``before_id``.

        Returns:
            PageResult with the raw items and whether older history remains
        """
        pass

    @abstractmethod
    async def fetch_items(self, feed_id: str) -> List[Dict[str, Any]]:
        """Return the authoritative list of currently loaded raw items for a feed."""
        pass

    @abstractmethod
    async def mark_read(self, feed_id: str) -> None:
        """Acknowledge that the current user has read the feed."""
        pass

    @abstractmethod
    async def list_conversations(self) -> List[Dict[str, Any]]:
        """Return raw conversation (channel) payloads visible to the current user."""
        pass
