"""
Main entry point for a feed client process.
Connects to the remote feed service, loads the user's conversations and follows one feed,
logging every change until interrupted.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Tuple

from activity.socketio_remote import SocketIOFeedRemote
from feed.models import FeedItem
from feed.session import ChatSession
from host.config import load_settings
from host.logging_setup import configure_logging_from_settings
from host.observability import setup_tracing

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Follow a chat feed from the remote feed service.")
    parser.add_argument("--user", required=True, help="Id of the signed-in user")
    parser.add_argument("--name", default=None, help="Display name of the signed-in user")
    parser.add_argument("--conversation", default=None, help="Conversation to follow (default: most recent)")
    parser.add_argument("--backfill", type=int, default=0, help="Number of older pages to load after opening")
    return parser.parse_args(argv)


def _log_items(items: Tuple[FeedItem, ...]) -> None:
    pending = sum(1 for item in items if item.pending)
    latest = items[-1].text if items else None
    logger.info(f"Feed now holds {len(items)} items ({pending} pending); latest: {latest!r}")


async def amain(args: argparse.Namespace) -> None:
    """Asynchronous main entry point."""
    settings = load_settings()
    configure_logging_from_settings(settings)
    if settings.tracing_enabled:
        setup_tracing()

    remote = SocketIOFeedRemote(settings=settings)
    await remote.connect()
    session = ChatSession(remote, args.user, user_name=args.name, settings=settings)

    try:
        conversations = await session.refresh_conversations()
        for conversation in conversations:
            logger.info(f"{conversation.display_name} ({conversation.conversation_id}): "
                        f"{conversation.unread_count(args.user)} unread")

        conversation_id = args.conversation or (conversations[0].conversation_id if conversations else None)
        if conversation_id is None:
            logger.warning("No conversations available to follow")
            return

        session.feed.add_listener(_log_items)
        session.feed.add_error_listener(lambda error: logger.error(f"Feed error: {error}"))
        await session.select_conversation(conversation_id)
        for _ in range(args.backfill):
            if not await session.load_more():
                break

        logger.info(f"Following conversation '{conversation_id}'. Press Ctrl+C to stop.")
        await asyncio.Event().wait()
    finally:
        logger.info("Feed client shutting down...")
        await session.close()
        await remote.disconnect()


def main(argv: Optional[list] = None) -> None:
    """Synchronous entry point."""
    args = parse_args(argv)
    try:
        asyncio.run(amain(args))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received.")
    except Exception as e:
        logger.critical(f"Critical error during feed client execution: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
