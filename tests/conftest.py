"""
Shared fixtures for feed engine tests.
"""

import pytest

from host.config import FeedSettings
from activity.memory_remote import InMemoryFeedRemote
from feed.controller import FeedController
from feed.item_store import OrderedItemStore
from feed.models import ChangeBatch, ChangeKind, FeedChange, FeedItem
from feed.optimistic import OptimisticEntryTracker

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture
def settings():
    """Settings that ignore any .env file in the working directory."""
    return FeedSettings(_env_file=None, page_size=2, pending_window_seconds=30.0)


@pytest.fixture
def raw_item():
    """Factory for raw remote item payloads."""
    def _make(item_id, text="Hello", author=OTHER_USER_ID, created_at=100.0, **extra):
        payload = {
            "id": item_id,
            "author": {"id": author, "name": author.title()},
            "text": text,
            "created_at": created_at,
        }
        payload.update(extra)
        return payload
    return _make


@pytest.fixture
def feed_item():
    """Factory for confirmed FeedItems."""
    def _make(item_id, created_at=100.0, text="Hello", author=OTHER_USER_ID, **extra):
        return FeedItem(item_id=item_id, author_id=author, text=text, created_at=created_at, **extra)
    return _make


@pytest.fixture
def batch():
    """Builds a ChangeBatch from (kind, payload) pairs."""
    def _make(feed_id, *changes):
        return ChangeBatch(feed_id=feed_id, changes=[FeedChange(kind=ChangeKind(kind), item=item) for kind, item in changes])
    return _make


@pytest.fixture
def store():
    return OrderedItemStore()


@pytest.fixture
def clock():
    """Manually advanced monotonic clock."""
    class _Clock:
        now = 1000.0

        def __call__(self):
            return self.now

        def advance(self, seconds):
            self.now += seconds
    return _Clock()


@pytest.fixture
def tracker(clock):
    return OptimisticEntryTracker(window_seconds=30.0, clock=clock)


@pytest.fixture
def remote():
    return InMemoryFeedRemote(user_id=USER_ID, user_name="Ada", initial_window=3)


@pytest.fixture
def controller(remote, settings):
    return FeedController(remote, settings=settings, current_user_id=USER_ID, current_user_name="Ada")
