"""
Conversation Directory
The current user's list of conversations: display names, ordering and unread counts.
"""
import logging
from typing import Dict, Any, Optional, List, Tuple

from .conversion import parse_timestamp
from .errors import ConversionFailed
from .models import Conversation, LastMessage, CONVERSATION_DIRECT, CONVERSATION_GROUP

logger = logging.getLogger(__name__)

_DIRECT_TYPES = {"messaging", "direct"}

# Preview text for a last message that has no text, by attachment type
_ATTACHMENT_PREVIEWS: List[Tuple[str, str]] = [
    ("image", "📷 Photo"),
    ("file", "📎 File"),
    ("giphy", "🎬 GIF"),
]


def direct_channel_id(user_a: str, user_b: str) -> str:
    """Deterministic id for the direct conversation between two users."""
    return "-".join(sorted([user_a, user_b]))


def parse_direct_channel_id(channel_id: str) -> Optional[Tuple[str, str]]:
    parts = channel_id.split("-")
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]


def _last_message(raw: Optional[Dict[str, Any]]) -> Optional[LastMessage]:
    if not raw:
        return None
    text = raw.get("text") or ""
    if not text:
        kinds = {attachment.get("type") for attachment in raw.get("attachments") or [] if isinstance(attachment, dict)}
        for kind, preview in _ATTACHMENT_PREVIEWS:
            if kind in kinds:
                text = preview
                break
    author = raw.get("author")
    sender_id = author.get("id") if isinstance(author, dict) else raw.get("author_id")
    return LastMessage(text=text, sender_id=sender_id, timestamp=parse_timestamp(raw.get("created_at")))


class ConversationDirectory:
    """
    Conversations visible to one user, kept sorted for display.

    Pinned conversations come first, then the most recently active.
    """

    def __init__(self, current_user_id: str):
        self.current_user_id = current_user_id
        self._conversations: Dict[str, Conversation] = {}
        self._user_names: Dict[str, str] = {}

    def convert_conversation(self, raw: Dict[str, Any]) -> Conversation:
        """
        Converts a raw conversation payload.

        Raises:
            ConversionFailed: If the payload is malformed.
        """
        if not isinstance(raw, dict) or not raw.get("id"):
            raise ConversionFailed(f"Conversation payload is missing 'id': {raw!r}", payload=raw if isinstance(raw, dict) else None)

        kind = CONVERSATION_DIRECT if raw.get("type", "messaging") in _DIRECT_TYPES else CONVERSATION_GROUP
        members = [member for member in raw.get("members") or [] if isinstance(member, dict) and member.get("id")]
        others = [member for member in members if member["id"] != self.current_user_id]

        name = raw.get("name") or None
        default_name = None
        if not name:
            if kind == CONVERSATION_DIRECT:
                if others:
                    default_name = others[0].get("name") or "User"
            else:
                default_name = ", ".join(member["name"] for member in others[:3] if member.get("name")) or None

        try:
            created_at = parse_timestamp(raw.get("created_at"))
            last_activity = parse_timestamp(raw["last_message_at"]) if raw.get("last_message_at") else created_at
            last_message = _last_message(raw.get("latest_message"))
            unread_counts = {user_id: int(count) for user_id, count in (raw.get("unread_counts") or {}).items()}
            if "unread_count" in raw:
                unread_counts[self.current_user_id] = int(raw["unread_count"] or 0)
        except (TypeError, ValueError) as e:
            raise ConversionFailed(f"Conversation '{raw.get('id')}' is malformed: {e}", payload=raw) from e

        return Conversation(
            conversation_id=raw["id"],
            kind=kind,
            participants=[member["id"] for member in members],
            name=name,
            default_name=default_name,
            resolved_name=self._resolve_name(kind, [member["id"] for member in others]),
            created_at=created_at,
            last_activity=last_activity,
            last_message=last_message,
            unread_counts=unread_counts,
            pinned_by=list(raw.get("pinned_by") or []),
        )

    def _resolve_name(self, kind: str, other_ids: List[str]) -> Optional[str]:
        names = [self._user_names[user_id] for user_id in other_ids if user_id in self._user_names]
        if not names:
            return None
        if kind == CONVERSATION_DIRECT:
            return names[0]
        return ", ".join(names[:3])

    def replace_all(self, raws: List[Dict[str, Any]]) -> List[Conversation]:
        """Replaces the directory with converted payloads, skipping malformed ones."""
        conversations: Dict[str, Conversation] = {}
        for raw in raws:
            try:
                conversation = self.convert_conversation(raw)
            except ConversionFailed as e:
                logger.warning(f"Skipping malformed conversation: {e}")
                continue
            conversations[conversation.conversation_id] = conversation
        self._conversations = conversations
        logger.debug(f"Conversation directory now holds {len(conversations)} conversations")
        return self.conversations

    def update(self, raw: Dict[str, Any]) -> Conversation:
        conversation = self.convert_conversation(raw)
        self._conversations[conversation.conversation_id] = conversation
        return conversation

    def resolve_names(self, user_names: Dict[str, str]) -> None:
        """Fills resolved display names from a user id -> full name mapping."""
        self._user_names = dict(user_names)
        for conversation in self._conversations.values():
            others = [user_id for user_id in conversation.participants if user_id != self.current_user_id]
            conversation.resolved_name = self._resolve_name(conversation.kind, others)

    def get(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    @property
    def conversations(self) -> List[Conversation]:
        return sorted(
            self._conversations.values(),
            key=lambda c: (not c.is_pinned(self.current_user_id), -c.last_activity, c.conversation_id),
        )

    def total_unread(self) -> int:
        return sum(c.unread_count(self.current_user_id) for c in self._conversations.values())

    def mark_read(self, conversation_id: str) -> bool:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return False
        conversation.unread_counts[self.current_user_id] = 0
        return True
