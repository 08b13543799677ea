"""
Change Reconciler
Applies batches of remote change notifications to an OrderedItemStore while
keeping optimistic entries consistent.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List

from host.observability import get_tracer

from .conversion import convert_item, convert_items
from .errors import ConversionFailed, LoadFailed
from .item_store import OrderedItemStore
from .models import ChangeBatch, ChangeKind, FeedChange, FeedItem
from .optimistic import OptimisticEntryTracker

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

SnapshotSource = Callable[[str], Awaitable[List[Dict[str, Any]]]]
ItemConverter = Callable[[Dict[str, Any]], FeedItem]


class ChangeReconciler:
    """
    Converts remote change batches into store mutations.

    Only one batch is applied at a time. A batch that arrives while another is
    being applied is dropped: the remote redelivers cumulative state with its
    next notification, so only convergence matters, not every delta.

    Move notifications are not applied incrementally. They set a reload flag
    and, after the rest of the batch, the store is rebuilt from the
    authoritative item list returned by ``snapshot_source``.
    """

    def __init__(self,
                 store: OrderedItemStore,
                 tracker: OptimisticEntryTracker,
                 snapshot_source: SnapshotSource,
                 converter: ItemConverter = convert_item):
        self.store = store
        self.tracker = tracker
        self._snapshot_source = snapshot_source
        self._converter = converter
        self._processing = False
        self.stats: Dict[str, int] = {
            "batches_applied": 0,
            "batches_dropped": 0,
            "conversion_failures": 0,
            "full_reloads": 0,
            "reload_failures": 0,
        }

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def apply_batch(self, batch: ChangeBatch) -> bool:
        """
        Applies one batch.

        Returns:
            True if the batch was applied, False if it was dropped because
            another batch was still being applied.

        Raises:
            LoadFailed: If a move required a full reload and the authoritative
                item list could not be fetched. Changes applied before the
                reload stay in the store and the batch is not counted as applied.
        """
        if self._processing:
            self.stats["batches_dropped"] += 1
            logger.debug(f"Dropping batch for feed '{batch.feed_id}' ({len(batch.changes)} changes): previous batch still applying")
            return False

        self._processing = True
        try:
            with tracer.start_as_current_span("feed.apply_batch") as span:
                span.set_attribute("feed.id", batch.feed_id)
                span.set_attribute("feed.change_count", len(batch.changes))

                for temporary_id in self.tracker.expire_stale():
                    self.store.remove(temporary_id)

                needs_full_reload = False
                for change in batch.changes:
                    if change.kind is ChangeKind.MOVE:
                        needs_full_reload = True
                        continue
                    self._apply_change(change)

                if needs_full_reload:
                    span.set_attribute("feed.full_reload", True)
                    await self._reload(batch.feed_id)

                self.stats["batches_applied"] += 1
                logger.debug(f"Applied batch for feed '{batch.feed_id}': {len(batch.changes)} changes, {len(self.store)} items")
            return True
        finally:
            self._processing = False

    def _apply_change(self, change: FeedChange) -> None:
        if change.kind is ChangeKind.REMOVE:
            item_id = change.item.get("id") if isinstance(change.item, dict) else None
            if not item_id or not isinstance(item_id, str):
                self.stats["conversion_failures"] += 1
                logger.warning(f"Skipping remove change without a string 'id': {change.item!r}")
                return
            self.store.remove(item_id)
            return

        try:
            item = self._converter(change.item)
        except ConversionFailed as e:
            self.stats["conversion_failures"] += 1
            logger.warning(f"Skipping {change.kind.value} change with malformed item: {e}")
            return

        if change.kind is ChangeKind.INSERT:
            self._apply_insert(item)
        elif change.kind is ChangeKind.UPDATE:
            if not self.store.replace(item.item_id, item):
                logger.debug(f"Ignoring update for item '{item.item_id}' outside the current view")

    def _apply_insert(self, item: FeedItem) -> None:
        temporary_id = self.tracker.resolve(item)
        if temporary_id is not None:
            self.store.remove(temporary_id)
            logger.debug(f"Confirmed item '{item.item_id}' replaces optimistic entry '{temporary_id}'")
        self.store.insert(item)

    async def _reload(self, feed_id: str) -> None:
        try:
            raw_items = await self._snapshot_source(feed_id)
        except Exception as e:
            # Changes applied earlier in the batch stay; the tracker still matches the store
            self.stats["reload_failures"] += 1
            logger.error(f"Failed to fetch authoritative items for feed '{feed_id}': {e}")
            raise LoadFailed(f"Failed to reload feed '{feed_id}': {e}") from e
        items, failures = convert_items(raw_items, self._converter)
        self.stats["conversion_failures"] += failures
        self.stats["full_reloads"] += 1
        self.store.reset(items)
        self.tracker.clear()
        logger.info(f"Rebuilt feed '{feed_id}' from {len(raw_items)} authoritative items ({failures} skipped)")
