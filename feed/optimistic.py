"""
Optimistic Entry Tracker
Tracks locally submitted items until the remote feed reports their confirmed counterpart.
"""
import logging
import time
import uuid
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from .models import FeedItem, OptimisticEntry, ITEM_TYPE_FILE, ITEM_TYPE_TEXT

logger = logging.getLogger(__name__)

TEMPORARY_ID_SUFFIX = "_temp"


def new_temporary_id() -> str:
    return f"{uuid.uuid4().hex}{TEMPORARY_ID_SUFFIX}"


class OptimisticEntryTracker:
    """
    Pending optimistic entries in submission order.

    A confirmed item resolves the entry whose temporary id it echoes as its
    correlation id. Without one, the oldest pending entry with the same author
    and payload is taken, so identical texts sent twice resolve first-in
    first-out.
    """

    def __init__(self, window_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self._window_seconds = window_seconds
        self._clock = clock
        self._pending: "OrderedDict[str, OptimisticEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, temporary_id: object) -> bool:
        return temporary_id in self._pending

    def pending(self) -> List[OptimisticEntry]:
        return list(self._pending.values())

    def get(self, temporary_id: str) -> Optional[OptimisticEntry]:
        return self._pending.get(temporary_id)

    def register_pending(self,
                         text: Optional[str],
                         author_id: str,
                         temporary_id: Optional[str] = None,
                         attachment_url: Optional[str] = None,
                         author_name: Optional[str] = None,
                         created_at: Optional[float] = None) -> OptimisticEntry:
        """
        Creates an optimistic entry holding the exact payload submitted.

        Args:
            text: Message text as it will be sent.
            author_id: The submitting user.
            temporary_id: Local identity; generated when omitted.
            attachment_url: Optional attachment reference.
            author_name: Display name shown while pending.
            created_at: Wall-clock creation time (defaults to now).

        Returns:
            The registered OptimisticEntry.
        """
        temporary_id = temporary_id or new_temporary_id()
        if temporary_id in self._pending:
            raise ValueError(f"Optimistic entry '{temporary_id}' is already pending")

        item = FeedItem(
            item_id=temporary_id,
            author_id=author_id,
            author_name=author_name,
            text=text,
            attachment_url=attachment_url,
            created_at=time.time() if created_at is None else created_at,
            item_type=ITEM_TYPE_FILE if attachment_url else ITEM_TYPE_TEXT,
            correlation_id=temporary_id,
            pending=True,
        )
        entry = OptimisticEntry(temporary_id=temporary_id, item=item, submitted_at=self._clock())
        self._pending[temporary_id] = entry
        logger.debug(f"Registered optimistic entry '{temporary_id}' by '{author_id}'")
        return entry

    def resolve(self, confirmed: FeedItem) -> Optional[str]:
        """
        Removes the pending entry matching a confirmed item.

        Returns:
            The matched temporary id, or None when the confirmed item is new
            (another participant's message or one from a prior session).
        """
        if confirmed.correlation_id and confirmed.correlation_id in self._pending:
            del self._pending[confirmed.correlation_id]
            logger.debug(f"Resolved optimistic entry '{confirmed.correlation_id}' by correlation id -> '{confirmed.item_id}'")
            return confirmed.correlation_id

        signature = confirmed.payload_signature
        for temporary_id, entry in self._pending.items():
            if entry.item.payload_signature == signature:
                del self._pending[temporary_id]
                logger.debug(f"Resolved optimistic entry '{temporary_id}' by payload match -> '{confirmed.item_id}'")
                return temporary_id
        return None

    def expire(self, temporary_id: str) -> bool:
        """Removes a pending entry unconditionally (used on send failure)."""
        entry = self._pending.pop(temporary_id, None)
        if entry is None:
            return False
        logger.debug(f"Expired optimistic entry '{temporary_id}'")
        return True

    def expire_stale(self, now: Optional[float] = None) -> List[str]:
        """Drops entries that waited longer than the window and returns their ids."""
        now = self._clock() if now is None else now
        stale = [temporary_id for temporary_id, entry in self._pending.items()
                 if now - entry.submitted_at > self._window_seconds]
        for temporary_id in stale:
            del self._pending[temporary_id]
        if stale:
            logger.info(f"Dropped {len(stale)} optimistic entries that were never confirmed: {stale}")
        return stale

    def clear(self) -> None:
        self._pending.clear()
