"""
Socket.IO Remote Feed

Thin I/O layer between the feed engine and a remote feed service reached over
Socket.IO. Requests are acknowledged calls; change notifications arrive as
server-pushed ``feed_changes`` events.

Acknowledgment payloads:
    {"success": true, "data": ...}
    {"success": false, "error": "...", "error_code": "empty_feed" | ...}
"""

import logging
from typing import Any, Dict, List, Optional

import socketio

from feed.errors import EmptyFeedError, RemoteError
from feed.models import ChangeBatch, PageResult
from host.config import FeedSettings, get_settings
from host.observability import get_tracer

from .remote import BatchHandler, FeedRemote, Subscription

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

EMPTY_FEED_ERROR_CODE = "empty_feed"


class SocketIOFeedRemote(FeedRemote):
    """
    Remote feed collaborator over a single socketio.AsyncClient connection.

    Handles only:
    - connection management
    - acknowledged request/response calls
    - routing pushed change batches to the subscriber of each feed
    """

    def __init__(self, settings: Optional[FeedSettings] = None,
                 url: Optional[str] = None, auth_token: Optional[str] = None):
        self.settings = settings or get_settings()
        self.url = url or self.settings.remote_url
        self.auth_token = auth_token if auth_token is not None else self.settings.remote_auth_token
        self.connected = False
        self._subscribers: Dict[str, BatchHandler] = {}
        self.client = socketio.AsyncClient(
            logger=False,
            reconnection=True,
            reconnection_attempts=self.settings.socket_reconnection_attempts,
            reconnection_delay=self.settings.socket_reconnection_delay,
        )
        self._register_event_handlers()
        logger.info(f"SocketIOFeedRemote initialized for {self.url}")

    def _register_event_handlers(self) -> None:
        client = self.client

        @client.event
        async def connect(*args):
            logger.info(f"Connected to feed service at {self.url}")
            self.connected = True
            # Server-side subscriptions do not survive a reconnect
            for feed_id in list(self._subscribers):
                try:
                    await self._request("feed_subscribe", {"feed_id": feed_id})
                except RemoteError as e:
                    logger.error(f"Failed to restore subscription to feed '{feed_id}' after reconnect: {e}")

        @client.event
        async def disconnect(*args):
            logger.info(f"Disconnected from feed service at {self.url}")
            self.connected = False

        @client.event
        async def connect_error(data):
            logger.error(f"Connection error with feed service at {self.url}: {data}")
            self.connected = False

        @client.on("feed_changes")
        async def handle_feed_changes(raw_payload: Dict[str, Any]):
            await self._dispatch_changes(raw_payload)

    async def _dispatch_changes(self, raw_payload: Any) -> None:
        with tracer.start_as_current_span("socketio_remote.feed_changes") as span:
            if not isinstance(raw_payload, dict):
                logger.warning(f"Received non-dict feed_changes payload: {raw_payload}")
                span.set_attribute("event.error", "Non-dict payload")
                return
            try:
                batch = ChangeBatch.from_payload(raw_payload)
            except ValueError as e:
                logger.warning(f"Received malformed feed_changes payload: {e}")
                span.set_attribute("event.error", str(e))
                return

            span.set_attribute("feed.id", batch.feed_id)
            handler = self._subscribers.get(batch.feed_id)
            if handler is None:
                logger.debug(f"No subscriber for feed '{batch.feed_id}'; dropping {len(batch.changes)} changes")
                return
            await handler(batch)

    async def connect(self) -> None:
        auth = {"token": self.auth_token} if self.auth_token else None
        try:
            await self.client.connect(self.url, auth=auth, namespaces=["/"], wait_timeout=self.settings.socket_timeout)
        except socketio.exceptions.ConnectionError as e:
            raise RemoteError(f"Failed to connect to feed service at {self.url}: {e}") from e

    async def disconnect(self) -> None:
        await self.client.disconnect()
        self.connected = False

    async def _request(self, event: str, data: Dict[str, Any]) -> Any:
        """
        Sends an acknowledged request and unwraps the response.

        Raises:
            EmptyFeedError: If the service reports an empty feed.
            RemoteError: On timeouts, disconnects and rejected requests.
        """
        with tracer.start_as_current_span(f"socketio_remote.{event}") as span:
            try:
                response = await self.client.call(event, data, timeout=self.settings.socket_timeout)
            except socketio.exceptions.TimeoutError as e:
                span.set_attribute("event.error", "timeout")
                raise RemoteError(f"'{event}' timed out after {self.settings.socket_timeout}s") from e
            except (socketio.exceptions.DisconnectedError, socketio.exceptions.BadNamespaceError) as e:
                span.set_attribute("event.error", "disconnected")
                self.connected = False
                raise RemoteError(f"Not connected to feed service during '{event}': {e}") from e

            if not isinstance(response, dict):
                raise RemoteError(f"Unexpected response to '{event}': {response!r}")
            if not response.get("success", False):
                error = response.get("error") or "unknown error"
                span.set_attribute("event.error", str(error))
                if response.get("error_code") == EMPTY_FEED_ERROR_CODE:
                    raise EmptyFeedError(error)
                raise RemoteError(f"'{event}' rejected: {error}")
            return response.get("data")

    # --- FeedRemote ---

    async def subscribe(self, feed_id: str, on_batch: BatchHandler) -> Subscription:
        self._subscribers[feed_id] = on_batch
        await self._request("feed_subscribe", {"feed_id": feed_id})

        def _unsubscribe() -> None:
            if self._subscribers.get(feed_id) is on_batch:
                del self._subscribers[feed_id]
                if self.connected:
                    self.client.start_background_task(self._unsubscribe_remote, feed_id)

        return Subscription(feed_id, on_cancel=_unsubscribe)

    async def _unsubscribe_remote(self, feed_id: str) -> None:
        try:
            await self._request("feed_unsubscribe", {"feed_id": feed_id})
        except RemoteError as e:
            logger.warning(f"Failed to unsubscribe from feed '{feed_id}': {e}")

    async def send_item(self, feed_id: str, text: str, attachment_url: Optional[str] = None,
                        correlation_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        payload: Dict[str, Any] = {"feed_id": feed_id, "text": text}
        if attachment_url:
            payload["attachments"] = [{"type": "image", "image_url": attachment_url}]
        if correlation_id:
            payload["correlation_id"] = correlation_id
        data = await self._request("feed_send_item", payload)
        return data if isinstance(data, dict) else None

    async def load_previous_page(self, feed_id: str, limit: int,
                                 before_id: Optional[str] = None) -> PageResult:
        data = await self._request("feed_load_previous_page", {"feed_id": feed_id, "limit": limit, "before_id": before_id})
        data = data or {}
        return PageResult(items=list(data.get("items") or []), has_more=bool(data.get("has_more")), cursor=data.get("cursor"))

    async def fetch_items(self, feed_id: str) -> List[Dict[str, Any]]:
        data = await self._request("feed_fetch_items", {"feed_id": feed_id})
        return list(data or [])

    async def mark_read(self, feed_id: str) -> None:
        # Fire-and-forget: no acknowledgment requested
        try:
            await self.client.emit("feed_mark_read", {"feed_id": feed_id})
        except socketio.exceptions.SocketIOError as e:
            raise RemoteError(f"Failed to mark feed '{feed_id}' as read: {e}") from e

    async def list_conversations(self) -> List[Dict[str, Any]]:
        data = await self._request("feed_list_conversations", {})
        return list(data or [])
