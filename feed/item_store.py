"""
Ordered Item Store
Keeps the items of one feed sorted by ordering key (ties broken by identity).
"""
import bisect
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .models import FeedItem

logger = logging.getLogger(__name__)


class OrderedItemStore:
    """
    In-memory ordered collection of FeedItems keyed by identity.

    Feeds hold hundreds of items, so positions are found by bisecting a
    parallel list of sort keys and the identity index is rebuilt after each
    structural change.
    """

    def __init__(self, items: Optional[Iterable[FeedItem]] = None):
        self._items: List[FeedItem] = []
        self._keys: List[Tuple[float, str]] = []
        self._index: Dict[str, int] = {}  # item_id -> position in _items
        if items:
            self.reset(items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._index

    def __iter__(self) -> Iterator[FeedItem]:
        return iter(tuple(self._items))

    def _rebuild_index(self) -> None:
        self._index = {item.item_id: i for i, item in enumerate(self._items)}

    def get(self, item_id: str) -> Optional[FeedItem]:
        position = self._index.get(item_id)
        return self._items[position] if position is not None else None

    def all(self) -> Tuple[FeedItem, ...]:
        """Returns the current ordered sequence as a read-only tuple."""
        return tuple(self._items)

    def oldest(self, confirmed_only: bool = False) -> Optional[FeedItem]:
        for item in self._items:
            if not confirmed_only or not item.pending:
                return item
        return None

    def insert(self, item: FeedItem) -> int:
        """
        Places an item by sort key and returns its position.

        An item whose identity is already stored replaces the stored one.
        """
        if item.item_id in self._index:
            logger.debug(f"Insert of existing item '{item.item_id}' treated as replace")
            self._remove_at(self._index[item.item_id])

        key = item.sort_key
        position = bisect.bisect_right(self._keys, key)
        self._items.insert(position, item)
        self._keys.insert(position, key)
        self._rebuild_index()
        return position

    def replace(self, item_id: str, new_item: FeedItem) -> bool:
        """
        Swaps the stored item in place, or reinserts it when its sort key changed.

        Returns:
            False if no item with ``item_id`` is stored.
        """
        position = self._index.get(item_id)
        if position is None:
            return False

        if new_item.item_id == item_id and new_item.sort_key == self._keys[position]:
            self._items[position] = new_item
            return True

        self._remove_at(position)
        self.insert(new_item)
        return True

    def remove(self, item_id: str) -> bool:
        """Deletes the item if present; a no-op otherwise."""
        position = self._index.get(item_id)
        if position is None:
            return False
        self._remove_at(position)
        return True

    def _remove_at(self, position: int) -> None:
        del self._items[position]
        del self._keys[position]
        self._rebuild_index()

    def reset(self, items: Iterable[FeedItem]) -> None:
        """Discards the contents and rebuilds from ``items``; later duplicates win."""
        by_id: Dict[str, FeedItem] = {}
        for item in items:
            by_id[item.item_id] = item
        self._items = sorted(by_id.values(), key=lambda item: item.sort_key)
        self._keys = [item.sort_key for item in self._items]
        self._rebuild_index()

    def clear(self) -> None:
        self._items = []
        self._keys = []
        self._index = {}

    def is_consistent(self) -> bool:
        """True when items are strictly ascending by sort key with unique identities."""
        if len(self._index) != len(self._items):
            return False
        return all(self._keys[i] < self._keys[i + 1] for i in range(len(self._keys) - 1))
