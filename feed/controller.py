"""
Feed Controller
Owns the feed of the currently open conversation and exposes it to the UI layer:
the ordered item list, optimistic submits and backfill requests.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from host.config import FeedSettings, get_settings

from .conversion import convert_item, convert_items
from .errors import (
    ConversionFailed,
    EmptyFeedError,
    FeedError,
    InvalidSubmission,
    LoadFailed,
    NotAuthenticated,
    SendFailed,
)
from .item_store import OrderedItemStore
from .models import ChangeBatch, FeedItem, OptimisticEntry, SendResult
from .optimistic import OptimisticEntryTracker
from .pagination import PaginationCursor
from .reconciler import ChangeReconciler

if TYPE_CHECKING:
    from activity.remote import FeedRemote, Subscription

logger = logging.getLogger(__name__)

ItemsListener = Callable[[Tuple[FeedItem, ...]], None]
ErrorListener = Callable[[FeedError], None]


class FeedController:
    """
    Reconciles one open feed with its remote collaborator.

    All methods must be called from the event loop that owns the controller;
    remote notifications are delivered on that loop as well. Opening another
    feed discards the previous feed's state, and notifications or page loads
    that belong to a previous feed are ignored.
    """

    def __init__(self,
                 remote: 'FeedRemote',
                 settings: Optional[FeedSettings] = None,
                 current_user_id: Optional[str] = None,
                 current_user_name: Optional[str] = None):
        self.remote = remote
        self.settings = settings or get_settings()
        self.current_user_id = current_user_id
        self.current_user_name = current_user_name

        self.feed_id: Optional[str] = None
        self.last_error: Optional[FeedError] = None
        self._generation = 0
        self._initial_loaded = False
        self._subscription: Optional['Subscription'] = None
        self._send_tasks: Dict[str, asyncio.Task] = {}
        self._background_tasks: List[asyncio.Task] = []
        self._listeners: List[ItemsListener] = []
        self._error_listeners: List[ErrorListener] = []
        self._reset_feed_state()

    def _reset_feed_state(self) -> None:
        # A fresh store per context, so work still running for a previous feed
        # only ever touches that feed's orphaned state.
        self.store = OrderedItemStore()
        self.tracker = OptimisticEntryTracker(window_seconds=self.settings.pending_window_seconds)
        self.cursor = PaginationCursor()
        self.reconciler = ChangeReconciler(self.store, self.tracker, self.remote.fetch_items)

    # --- Observation ---

    @property
    def items(self) -> Tuple[FeedItem, ...]:
        return self.store.all()

    @property
    def is_sending(self) -> bool:
        return bool(self._send_tasks)

    def add_listener(self, listener: ItemsListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ItemsListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def _notify(self) -> None:
        items = self.store.all()
        for listener in list(self._listeners):
            try:
                listener(items)
            except Exception as e:
                logger.error(f"Feed listener {listener!r} failed: {e}", exc_info=True)

    def _report_error(self, error: FeedError) -> None:
        self.last_error = error
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception as e:
                logger.error(f"Feed error listener {listener!r} failed: {e}", exc_info=True)

    # --- Context ---

    async def open(self, feed_id: str) -> Tuple[FeedItem, ...]:
        """
        Makes ``feed_id`` the current feed and loads its items.

        Raises:
            NotAuthenticated: If no user is set.
            LoadFailed: If the initial items could not be fetched; the feed
                is closed again.
        """
        if not self.current_user_id:
            raise NotAuthenticated("Cannot open a feed without an active user")

        await self.close()
        self._generation += 1
        generation = self._generation
        self.feed_id = feed_id
        logger.info(f"Opening feed '{feed_id}'")

        # Subscribe before loading so nothing is missed; batches are skipped
        # until the initial items are in place.
        self._subscription = await self.remote.subscribe(feed_id, self._batch_handler(feed_id, generation))

        try:
            raw_items = await self.remote.fetch_items(feed_id)
        except Exception as e:
            error = LoadFailed(f"Failed to load feed '{feed_id}': {e}")
            if generation == self._generation:
                await self.close()
            self._report_error(error)
            raise error from e

        if generation != self._generation:
            logger.debug(f"Feed '{feed_id}' was closed while loading; discarding initial items")
            return self.items

        items, failures = convert_items(raw_items)
        self.store.reset(items)
        # An empty feed has no prior page to extend
        self.cursor.reset(more=bool(items))
        self._initial_loaded = True
        logger.info(f"Feed '{feed_id}' loaded with {len(items)} items ({failures} skipped)")
        self._notify()

        task = asyncio.ensure_future(self._mark_read(feed_id))
        self._background_tasks.append(task)
        task.add_done_callback(self._background_finished)
        return self.items

    def _background_finished(self, task: asyncio.Task) -> None:
        if task in self._background_tasks:
            self._background_tasks.remove(task)

    async def close(self) -> None:
        """Stops observing the current feed and discards its state."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self.feed_id is not None:
            logger.info(f"Closing feed '{self.feed_id}'")
        self._generation += 1
        self.feed_id = None
        self._initial_loaded = False
        self._reset_feed_state()

    async def _mark_read(self, feed_id: str) -> None:
        try:
            await self.remote.mark_read(feed_id)
        except Exception as e:
            logger.warning(f"Failed to mark feed '{feed_id}' as read: {e}")

    # --- Remote notifications ---

    def _batch_handler(self, feed_id: str, generation: int):
        async def handle(batch: ChangeBatch) -> None:
            await self._on_batch(batch, feed_id, generation)
        return handle

    async def _on_batch(self, batch: ChangeBatch, feed_id: str, generation: int) -> None:
        if generation != self._generation or batch.feed_id != feed_id:
            logger.debug(f"Ignoring batch for feed '{batch.feed_id}': not the current feed")
            return
        if not self._initial_loaded:
            logger.debug(f"Skipping batch for feed '{feed_id}': initial items not loaded yet")
            return

        try:
            applied = await self.reconciler.apply_batch(batch)
        except LoadFailed as e:
            logger.error(f"Batch for feed '{feed_id}' applied only partially: {e}")
            if generation == self._generation:
                self._report_error(e)
                self._notify()
            return
        if applied and generation == self._generation:
            self._notify()

    # --- Sending ---

    def submit(self, text: Optional[str], attachment_url: Optional[str] = None) -> OptimisticEntry:
        """
        Shows a message immediately and sends it in the background.

        Must be called from within the running event loop. On failure the
        optimistic item is removed again and SendFailed is reported to the
        error listeners.

        Returns:
            The optimistic entry now visible in ``items``.
        """
        entry, _ = self._submit(text, attachment_url)
        return entry

    async def send(self, text: Optional[str], attachment_url: Optional[str] = None) -> SendResult:
        """
        Submits a message and waits for the remote acknowledgment.

        Raises:
            SendFailed: If the remote rejected the message.
        """
        _, task = self._submit(text, attachment_url)
        return await task

    def _submit(self, text: Optional[str], attachment_url: Optional[str]) -> Tuple[OptimisticEntry, asyncio.Task]:
        if not self.current_user_id:
            raise NotAuthenticated("Cannot send without an active user")
        if self.feed_id is None:
            raise FeedError("No feed is open")
        if not self._initial_loaded:
            # The initial load replaces the store wholesale
            raise FeedError(f"Feed '{self.feed_id}' is still loading")

        clean_text = (text or "").strip()
        if not clean_text and not attachment_url:
            raise InvalidSubmission("Message has neither text nor an attachment")

        entry = self.tracker.register_pending(
            clean_text,
            self.current_user_id,
            attachment_url=attachment_url,
            author_name=self.current_user_name,
        )
        self.store.insert(entry.item)
        logger.debug(f"Added optimistic item '{entry.temporary_id}', {len(self.store)} items")
        self._notify()

        task = asyncio.ensure_future(self._settle_submit(entry, self.feed_id, self._generation))
        self._send_tasks[entry.temporary_id] = task
        task.add_done_callback(lambda done, temporary_id=entry.temporary_id: self._send_finished(temporary_id, done))
        return entry, task

    def _send_finished(self, temporary_id: str, task: asyncio.Task) -> None:
        self._send_tasks.pop(temporary_id, None)
        if not task.cancelled():
            # Failures were already reported to the error listeners
            task.exception()

    async def _settle_submit(self, entry: OptimisticEntry, feed_id: str, generation: int) -> SendResult:
        temporary_id = entry.temporary_id
        try:
            raw = await self.remote.send_item(
                feed_id,
                entry.item.text or "",
                attachment_url=entry.item.attachment_url,
                correlation_id=temporary_id,
            )
        except Exception as e:
            logger.error(f"Failed to send message '{temporary_id}' to feed '{feed_id}': {e}")
            if generation == self._generation:
                self.tracker.expire(temporary_id)
                self.store.remove(temporary_id)
                self._notify()
            error = SendFailed(f"Failed to send message: {e}", temporary_id=temporary_id)
            self._report_error(error)
            raise error from e

        # The confirmed item itself arrives with the next insert batch
        confirmed: Optional[FeedItem] = None
        if raw:
            try:
                confirmed = convert_item(raw)
            except ConversionFailed as e:
                logger.warning(f"Send acknowledgment for '{temporary_id}' carried a malformed item: {e}")
        logger.debug(f"Message '{temporary_id}' acknowledged by feed '{feed_id}'")
        return SendResult(temporary_id=temporary_id, item=confirmed)

    # --- Backfill ---

    async def request_more(self) -> bool:
        """
        Loads one page of older history.

        Returns:
            True if a page was loaded and merged; False if nothing was
            requested (no more history, a load already in flight, empty feed)
            or the load failed (LoadFailed is reported to the error listeners).
        """
        if self.feed_id is None or not self.cursor.can_load_more():
            return False

        oldest = self.store.oldest(confirmed_only=True)
        if oldest is None:
            self.cursor.mark_exhausted()
            logger.debug(f"Feed '{self.feed_id}' is empty; no history to backfill")
            return False

        feed_id, generation = self.feed_id, self._generation
        store, cursor = self.store, self.cursor

        with cursor.loading():
            try:
                page = await self.remote.load_previous_page(feed_id, self.settings.page_size, before_id=oldest.item_id)
            except EmptyFeedError:
                cursor.end_load(more=False)
                return False
            except Exception as e:
                logger.error(f"Failed to load older messages for feed '{feed_id}': {e}")
                if generation == self._generation:
                    self._report_error(LoadFailed(f"Failed to load older messages: {e}"))
                return False

            if generation != self._generation:
                logger.debug(f"Discarding page for feed '{feed_id}': context switched during load")
                return False

            items, failures = convert_items(page.items)
            for item in items:
                if item.item_id not in store:
                    store.insert(item)
            cursor.end_load(more=page.has_more, cursor=page.cursor)

        logger.debug(f"Backfilled {len(items)} items into feed '{feed_id}' ({failures} skipped), more={cursor.more}")
        self._notify()
        return True

    async def aclose(self) -> None:
        """Closes the feed and waits for background work (sends, read marks)."""
        await self.close()
        pending = list(self._send_tasks.values()) + self._background_tasks
        self._background_tasks = []
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
