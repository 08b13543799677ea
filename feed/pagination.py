"""
Pagination Cursor
Bookkeeping for backfill of older history.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from .models import PaginationState

logger = logging.getLogger(__name__)


class PaginationCursor:
    """
    Tracks whether more history exists and whether a page load is in flight.

    Every begin_load() must be paired with exactly one end_load(); loading()
    does the pairing for a block of code.
    """

    def __init__(self, more: bool = True, cursor: Optional[str] = None):
        self._state = PaginationState(more=more, cursor=cursor, loading=False)

    @property
    def state(self) -> PaginationState:
        return PaginationState(more=self._state.more, cursor=self._state.cursor, loading=self._state.loading)

    @property
    def more(self) -> bool:
        return self._state.more

    @property
    def is_loading(self) -> bool:
        return self._state.loading

    @property
    def cursor(self) -> Optional[str]:
        return self._state.cursor

    def can_load_more(self) -> bool:
        return self._state.more and not self._state.loading

    def begin_load(self) -> None:
        if self._state.loading:
            raise RuntimeError("A page load is already in flight")
        self._state.loading = True

    def end_load(self, more: Optional[bool] = None, cursor: Optional[str] = None) -> None:
        """
        Clears the in-flight flag.

        Args:
            more: New "more available" value; None keeps the current one so a
                failed load can be retried.
            cursor: New opaque cursor from the remote, if it returned one.
        """
        if not self._state.loading:
            logger.warning("end_load() called without a load in flight")
        self._state.loading = False
        if more is not None:
            self._state.more = more
        if cursor is not None:
            self._state.cursor = cursor

    @contextmanager
    def loading(self) -> Iterator['PaginationCursor']:
        """Holds the in-flight flag for the block; it is cleared even if the block raises."""
        self.begin_load()
        try:
            yield self
        finally:
            if self._state.loading:
                self.end_load()

    def mark_exhausted(self) -> None:
        self._state.more = False

    def reset(self, more: bool = True) -> None:
        self._state = PaginationState(more=more, cursor=None, loading=False)
