#!/usr/bin/env python3
"""
Normalized feed items and the notification payloads rendered from them.

Normalizers turn upstream feed records into NormalizedItem instances; the
poller renders the eligible ones into NotificationPayload objects using the
subscriber's styling before handing them to the transport.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from utils import truncate_string

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 400

ItemIdentity = Union[int, str]


@dataclass(frozen=True)
class NormalizedItem:
    """Format-agnostic projection of a single feed item."""

    identity: ItemIdentity
    title: Optional[str] = None
    author: Optional[str] = None
    author_url: Optional[str] = None
    link: Optional[str] = None
    description: Optional[str] = None
    timestamp: Optional[datetime] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    footer: Optional[str] = None
    footer_icon_url: Optional[str] = None


@dataclass(frozen=True)
class NotificationPayload:
    """Delivery-ready rendering of a NormalizedItem for one destination."""

    color: int
    title: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    timestamp: Optional[datetime] = None
    author: Optional[str] = None
    author_url: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    footer: Optional[str] = None
    footer_icon_url: Optional[str] = None

    def to_embed(self) -> Dict[str, Any]:
        """Serialize into the rich-embed mapping webhooks accept; empty fields are omitted."""
        embed: Dict[str, Any] = {"color": self.color}
        if self.title:
            embed["title"] = self.title
        if self.description:
            embed["description"] = self.description
        if self.url:
            embed["url"] = self.url
        if self.timestamp:
            ts = self.timestamp
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=timezone.utc)
            embed["timestamp"] = ts.astimezone(timezone.utc).isoformat()
        if self.author:
            author: Dict[str, str] = {"name": self.author}
            if self.author_url:
                author["url"] = self.author_url
            embed["author"] = author
        if self.footer or self.footer_icon_url:
            footer: Dict[str, str] = {"text": self.footer or ""}
            if self.footer_icon_url:
                footer["icon_url"] = self.footer_icon_url
            embed["footer"] = footer
        if self.image_url:
            embed["image"] = {"url": self.image_url}
        if self.thumbnail_url:
            embed["thumbnail"] = {"url": self.thumbnail_url}
        return embed


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def render_payload(item: NormalizedItem, color: int) -> NotificationPayload:
    """Render an item with destination styling, enforcing title/description caps."""
    title = _clean(item.title)
    description = _clean(item.description)
    return NotificationPayload(
        color=color,
        title=truncate_string(title, TITLE_MAX_LENGTH) if title else None,
        description=truncate_string(description, DESCRIPTION_MAX_LENGTH) if description else None,
        url=_clean(item.link),
        timestamp=item.timestamp,
        author=_clean(item.author),
        author_url=_clean(item.author_url),
        image_url=_clean(item.image_url),
        thumbnail_url=_clean(item.thumbnail_url),
        footer=_clean(item.footer),
        footer_icon_url=_clean(item.footer_icon_url),
    )
