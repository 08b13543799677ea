"""
Chat Session
One signed-in user's chat state: the conversation directory and the open feed.
Constructed explicitly and passed to whoever needs it.
"""
import logging
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from host.config import FeedSettings, get_settings

from .controller import FeedController
from .conversations import ConversationDirectory
from .errors import LoadFailed, NotAuthenticated
from .models import Conversation, FeedItem, SendResult

if TYPE_CHECKING:
    from activity.remote import FeedRemote

logger = logging.getLogger(__name__)


class ChatSession:
    """Wires a ConversationDirectory and a FeedController to one remote collaborator."""

    def __init__(self,
                 remote: 'FeedRemote',
                 user_id: Optional[str],
                 user_name: Optional[str] = None,
                 settings: Optional[FeedSettings] = None):
        if not user_id:
            raise NotAuthenticated("A chat session needs an active user")
        self.remote = remote
        self.user_id = user_id
        self.user_name = user_name
        self.settings = settings or get_settings()
        self.directory = ConversationDirectory(user_id)
        self.feed = FeedController(remote, settings=self.settings, current_user_id=user_id, current_user_name=user_name)

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self.feed.feed_id

    @property
    def messages(self) -> Tuple[FeedItem, ...]:
        return self.feed.items

    async def refresh_conversations(self, user_names: Optional[Dict[str, str]] = None) -> List[Conversation]:
        """
        Reloads the conversation list from the remote.

        Raises:
            LoadFailed: If the remote could not list conversations.
        """
        try:
            raws = await self.remote.list_conversations()
        except Exception as e:
            raise LoadFailed(f"Failed to load conversations: {e}") from e
        self.directory.replace_all(raws)
        if user_names:
            self.directory.resolve_names(user_names)
        logger.info(f"Loaded {len(self.directory.conversations)} conversations, {self.directory.total_unread()} unread")
        return self.directory.conversations

    async def select_conversation(self, conversation_id: str) -> Tuple[FeedItem, ...]:
        items = await self.feed.open(conversation_id)
        self.directory.mark_read(conversation_id)
        return items

    async def send(self, text: str, attachment_url: Optional[str] = None) -> SendResult:
        return await self.feed.send(text, attachment_url=attachment_url)

    async def load_more(self) -> bool:
        return await self.feed.request_more()

    async def close(self) -> None:
        await self.feed.aclose()
