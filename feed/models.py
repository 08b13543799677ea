"""
Feed Models
Value types shared by the item store, the reconciler and the remote collaborators.
"""
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple

logger = logging.getLogger(__name__)

ITEM_TYPE_TEXT = "text"
ITEM_TYPE_FILE = "file"
ITEM_TYPE_SYSTEM = "system"

CONVERSATION_DIRECT = "direct"
CONVERSATION_GROUP = "group"


@dataclass(frozen=True)
class FeedItem:
    """
    One message in a feed.

    Confirmed items are immutable. Optimistic items carry ``pending=True`` and
    are only ever replaced or removed.
    """
    item_id: str
    author_id: Optional[str]
    text: Optional[str] = None
    attachment_url: Optional[str] = None
    created_at: float = 0.0
    ordering_key: Optional[float] = None
    author_name: Optional[str] = None
    item_type: str = ITEM_TYPE_TEXT
    correlation_id: Optional[str] = None
    pending: bool = False

    @property
    def effective_ordering_key(self) -> float:
        return self.created_at if self.ordering_key is None else self.ordering_key

    @property
    def sort_key(self) -> Tuple[float, str]:
        # Ties on the ordering key are broken by identity
        return (self.effective_ordering_key, self.item_id)

    @property
    def payload_signature(self) -> Tuple[Optional[str], str, Optional[str]]:
        return (self.author_id, self.text or "", self.attachment_url)

    def with_changes(self, **changes: Any) -> 'FeedItem':
        return replace(self, **changes)


@dataclass
class OptimisticEntry:
    """A locally created item shown before the remote confirms it."""
    temporary_id: str
    item: FeedItem
    submitted_at: float = field(default_factory=time.monotonic)

    @property
    def author_id(self) -> Optional[str]:
        return self.item.author_id

    @property
    def text(self) -> Optional[str]:
        return self.item.text


class ChangeKind(Enum):
    INSERT = "insert"
    UPDATE = "update"
    REMOVE = "remove"
    MOVE = "move"


@dataclass
class FeedChange:
    kind: ChangeKind
    item: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChangeBatch:
    """A batch of change notifications reported by the remote feed, in reported order."""
    feed_id: str
    changes: List[FeedChange] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'ChangeBatch':
        """
        Parses the wire shape ``{"feed_id": ..., "changes": [{"type": ..., "item": {...}}]}``.

        Entries with an unknown change type are skipped.
        """
        feed_id = payload.get("feed_id")
        if not feed_id:
            raise ValueError(f"Change batch payload is missing 'feed_id': {payload}")

        changes: List[FeedChange] = []
        for raw_change in payload.get("changes") or []:
            if not isinstance(raw_change, dict):
                logger.warning(f"Skipping non-dict change in batch for feed '{feed_id}': {raw_change}")
                continue
            try:
                kind = ChangeKind(raw_change.get("type"))
            except ValueError:
                logger.warning(f"Skipping change with unknown type '{raw_change.get('type')}' in batch for feed '{feed_id}'")
                continue
            item = raw_change.get("item") or {}
            if not isinstance(item, dict):
                logger.warning(f"Skipping {kind.value} change with non-dict item in batch for feed '{feed_id}': {item!r}")
                continue
            changes.append(FeedChange(kind=kind, item=item))
        return cls(feed_id=feed_id, changes=changes)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "feed_id": self.feed_id,
            "changes": [{"type": change.kind.value, "item": change.item} for change in self.changes],
        }


@dataclass
class PaginationState:
    more: bool = True
    cursor: Optional[str] = None
    loading: bool = False


@dataclass
class PageResult:
    """One page of older history returned by the remote feed."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    cursor: Optional[str] = None


@dataclass
class SendResult:
    temporary_id: str
    item: Optional[FeedItem] = None


@dataclass
class LastMessage:
    text: str
    sender_id: Optional[str]
    timestamp: float


@dataclass
class Conversation:
    conversation_id: str
    kind: str = CONVERSATION_DIRECT
    participants: List[str] = field(default_factory=list)
    name: Optional[str] = None
    default_name: Optional[str] = None
    resolved_name: Optional[str] = None
    created_at: float = 0.0
    last_activity: float = 0.0
    last_message: Optional[LastMessage] = None
    unread_counts: Dict[str, int] = field(default_factory=dict)
    pinned_by: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        # Priority: custom name > resolved name > default name > fallback
        for candidate in (self.name, self.resolved_name, self.default_name):
            if candidate:
                return candidate
        return "Direct Message" if self.kind == CONVERSATION_DIRECT else "Group Chat"

    def unread_count(self, user_id: str) -> int:
        return self.unread_counts.get(user_id, 0)

    def is_pinned(self, user_id: str) -> bool:
        return user_id in self.pinned_by
