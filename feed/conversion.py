"""
Conversion of remote feed payloads into FeedItems.

Remote items arrive as dictionaries:

    {
        "id": "msg-1",
        "author": {"id": "user-1", "name": "Ada"},   # or author_id / author_name
        "text": "hello",
        "type": "regular" | "system",
        "attachments": [{"type": "image", "image_url": "..."}, {"type": "file", "asset_url": "..."}],
        "created_at": 1700000000.0 | "2024-01-01T10:00:00+00:00",
        "ordering_key": 1700000000.0,                # optional
        "correlation_id": "abc_temp"                 # optional, echoed client id
    }
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Any, Optional, List, Tuple

from .errors import ConversionFailed
from .models import FeedItem, ITEM_TYPE_FILE, ITEM_TYPE_SYSTEM, ITEM_TYPE_TEXT

logger = logging.getLogger(__name__)

# Attachment kinds in preference order when picking the item's attachment reference
_ATTACHMENT_URL_FIELDS: List[Tuple[str, str]] = [
    ("image", "image_url"),
    ("file", "asset_url"),
    ("giphy", "thumb_url"),
]


def parse_timestamp(value: Any) -> float:
    """Accepts epoch seconds, epoch milliseconds or an ISO-8601 string and returns epoch seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        # Values this large are milliseconds
        return value / 1000.0 if value > 1e11 else float(value)
    if isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    raise ValueError(f"Invalid timestamp: {value!r}")


def attachment_url(attachments: Any) -> Optional[str]:
    """Returns the first image URL, else the first file URL, else the first GIF thumbnail."""
    if not attachments:
        return None
    if not isinstance(attachments, list):
        raise ValueError(f"'attachments' must be a list, got {type(attachments).__name__}")
    for kind, url_field in _ATTACHMENT_URL_FIELDS:
        for attachment in attachments:
            if isinstance(attachment, dict) and attachment.get("type") == kind and attachment.get(url_field):
                return attachment[url_field]
    return None


def _author(raw: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    author = raw.get("author")
    if isinstance(author, dict):
        return author.get("id"), author.get("name")
    return raw.get("author_id"), raw.get("author_name")


def convert_item(raw: Dict[str, Any]) -> FeedItem:
    """
    Converts one remote item payload to a FeedItem.

    Raises:
        ConversionFailed: If the payload is malformed.
    """
    if not isinstance(raw, dict):
        raise ConversionFailed(f"Remote item is not a mapping: {raw!r}")

    item_id = raw.get("id")
    if not item_id or not isinstance(item_id, str):
        raise ConversionFailed("Remote item is missing a string 'id'", payload=raw)

    text = raw.get("text")
    if text is not None and not isinstance(text, str):
        raise ConversionFailed(f"Remote item '{item_id}' has non-string text", payload=raw)

    try:
        created_at = parse_timestamp(raw.get("created_at"))
        ordering_key = raw.get("ordering_key")
        if ordering_key is not None:
            ordering_key = parse_timestamp(ordering_key)
        url = attachment_url(raw.get("attachments"))
    except ValueError as e:
        raise ConversionFailed(f"Remote item '{item_id}' is malformed: {e}", payload=raw) from e

    author_id, author_name = _author(raw)

    if raw.get("type") == ITEM_TYPE_SYSTEM:
        item_type = ITEM_TYPE_SYSTEM
    elif url:
        item_type = ITEM_TYPE_FILE
    else:
        item_type = ITEM_TYPE_TEXT

    return FeedItem(
        item_id=item_id,
        author_id=author_id,
        author_name=author_name,
        text=text,
        attachment_url=url,
        created_at=created_at,
        ordering_key=ordering_key,
        item_type=item_type,
        correlation_id=raw.get("correlation_id"),
    )


def convert_items(raws: List[Dict[str, Any]],
                  converter: Callable[[Dict[str, Any]], FeedItem] = convert_item) -> Tuple[List[FeedItem], int]:
    """
    Converts a list of payloads, skipping malformed ones.

    Returns:
        The converted items and the number of payloads skipped.
    """
    items: List[FeedItem] = []
    failures = 0
    for raw in raws:
        try:
            items.append(converter(raw))
        except ConversionFailed as e:
            failures += 1
            logger.warning(f"Skipping malformed remote item: {e}")
    return items, failures
