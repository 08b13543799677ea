"""
In-process remote feed.

Keeps authoritative feeds in memory and behaves like the chat backend: it
assigns identities to sent items, pushes insert batches to subscribers after
acknowledging a send, and pages older history into the loaded window.
Used for tests, demos and offline runs.
"""

import asyncio
import copy
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from feed.errors import EmptyFeedError, RemoteError
from feed.models import ChangeBatch, ChangeKind, FeedChange, PageResult

from .remote import BatchHandler, FeedRemote, Subscription

logger = logging.getLogger(__name__)


class InMemoryFeedRemote(FeedRemote):
    """
    Remote feed collaborator backed by dictionaries.

    Each feed has a full history and a loaded window (the newest
    ``initial_window`` items at first); fetch_items() returns the window and
    load_previous_page() extends it backwards.
    """

    def __init__(self, user_id: str = "user-1", user_name: Optional[str] = None,
                 initial_window: int = 50, echo_correlation_id: bool = False,
                 clock: Callable[[], float] = time.time):
        self.user_id = user_id
        self.user_name = user_name
        self.initial_window = initial_window
        self.echo_correlation_id = echo_correlation_id
        self._clock = clock
        self._history: Dict[str, List[Dict[str, Any]]] = {}
        self._window_start: Dict[str, int] = {}
        self._subscribers: Dict[str, List[BatchHandler]] = {}
        self._conversations: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._delivery_tasks: List[asyncio.Task] = []

        # Failure injection and call records
        self.fail_sends: Optional[str] = None
        self.fail_loads: Optional[str] = None
        self.read_marks: List[str] = []
        self.sent: List[Dict[str, Any]] = []

    # --- Server-side helpers ---

    def add_item(self, feed_id: str, item: Dict[str, Any]) -> Dict[str, Any]:
        """Appends a raw item to a feed's history, keeping it inside the loaded window."""
        history = self._history.setdefault(feed_id, [])
        stored = copy.deepcopy(item)
        stored.setdefault("id", f"msg-{next(self._ids)}")
        stored.setdefault("created_at", self._clock())
        history.append(stored)
        history.sort(key=lambda raw: (raw["created_at"], raw["id"]))
        self._window_start.setdefault(feed_id, 0)
        return copy.deepcopy(stored)

    def seed_history(self, feed_id: str, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Adds existing history; only the newest ``initial_window`` items start out loaded."""
        stored = [self.add_item(feed_id, item) for item in items]
        history = self._history.setdefault(feed_id, [])
        self._window_start[feed_id] = max(0, len(history) - self.initial_window)
        return stored

    def add_conversation(self, conversation: Dict[str, Any]) -> None:
        self._conversations[conversation["id"]] = copy.deepcopy(conversation)

    async def publish(self, batch: ChangeBatch) -> None:
        """Delivers a batch to the current subscribers of its feed."""
        for handler in list(self._subscribers.get(batch.feed_id, [])):
            await handler(batch)

    async def drain(self) -> None:
        """Waits until all scheduled insert deliveries have run."""
        while self._delivery_tasks:
            tasks, self._delivery_tasks = self._delivery_tasks, []
            await asyncio.gather(*tasks)

    # --- FeedRemote ---

    async def subscribe(self, feed_id: str, on_batch: BatchHandler) -> Subscription:
        handlers = self._subscribers.setdefault(feed_id, [])
        handlers.append(on_batch)

        def _unsubscribe() -> None:
            if on_batch in handlers:
                handlers.remove(on_batch)

        return Subscription(feed_id, on_cancel=_unsubscribe)

    async def send_item(self, feed_id: str, text: str, attachment_url: Optional[str] = None,
                        correlation_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if self.fail_sends:
            raise RemoteError(self.fail_sends)

        raw: Dict[str, Any] = {
            "author": {"id": self.user_id, "name": self.user_name},
            "text": text,
            "created_at": self._clock(),
        }
        if attachment_url:
            raw["attachments"] = [{"type": "image", "image_url": attachment_url}]
        if correlation_id and self.echo_correlation_id:
            raw["correlation_id"] = correlation_id

        stored = self.add_item(feed_id, raw)
        self.sent.append(stored)
        batch = ChangeBatch(feed_id=feed_id, changes=[FeedChange(kind=ChangeKind.INSERT, item=copy.deepcopy(stored))])
        self._delivery_tasks.append(asyncio.ensure_future(self.publish(batch)))
        return stored

    async def load_previous_page(self, feed_id: str, limit: int,
                                 before_id: Optional[str] = None) -> PageResult:
        if self.fail_loads:
            raise RemoteError(self.fail_loads)

        history = self._history.get(feed_id, [])
        if not history:
            raise EmptyFeedError(f"Feed '{feed_id}' has no messages")

        end = self._window_start.get(feed_id, 0)
        if before_id is not None:
            positions = [i for i, raw in enumerate(history) if raw["id"] == before_id]
            if positions:
                end = min(end, positions[0])
        start = max(0, end - limit)
        self._window_start[feed_id] = min(self._window_start.get(feed_id, start), start)
        page = copy.deepcopy(history[start:end])
        return PageResult(items=page, has_more=start > 0)

    async def fetch_items(self, feed_id: str) -> List[Dict[str, Any]]:
        history = self._history.get(feed_id, [])
        start = self._window_start.get(feed_id, 0)
        return copy.deepcopy(history[start:])

    async def mark_read(self, feed_id: str) -> None:
        self.read_marks.append(feed_id)
        conversation = self._conversations.get(feed_id)
        if conversation is not None:
            conversation.setdefault("unread_counts", {})[self.user_id] = 0

    async def list_conversations(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(list(self._conversations.values()))
