"""
Feed reconciliation: ordered item store, optimistic entries, change batches and backfill.
"""

from .models import (
    ChangeBatch,
    ChangeKind,
    Conversation,
    FeedChange,
    FeedItem,
    OptimisticEntry,
    PageResult,
    PaginationState,
    SendResult,
)
from .errors import (
    ConversionFailed,
    EmptyFeedError,
    FeedError,
    InvalidSubmission,
    LoadFailed,
    NotAuthenticated,
    RemoteError,
    SendFailed,
)
from .item_store import OrderedItemStore
from .optimistic import OptimisticEntryTracker
from .pagination import PaginationCursor
from .reconciler import ChangeReconciler
from .controller import FeedController
from .conversations import ConversationDirectory
from .session import ChatSession

__all__ = [
    "ChangeBatch",
    "ChangeKind",
    "ChangeReconciler",
    "ChatSession",
    "Conversation",
    "ConversationDirectory",
    "ConversionFailed",
    "EmptyFeedError",
    "FeedChange",
    "FeedController",
    "FeedError",
    "FeedItem",
    "InvalidSubmission",
    "LoadFailed",
    "NotAuthenticated",
    "OptimisticEntry",
    "OptimisticEntryTracker",
    "OrderedItemStore",
    "PageResult",
    "PaginationCursor",
    "PaginationState",
    "RemoteError",
    "SendFailed",
    "SendResult",
]
