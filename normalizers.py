#!/usr/bin/env python3
"""
Feed normalizers.

Each pipeline parses a fetched body into a ParsedFeed: an ordered list of
entries carrying their natural identity, plus the feed-level metadata needed
to render them. Rendering into a NormalizedItem happens later and only for
entries the poller decides to deliver, since the footer depends on the
subscriber's display title.

Pipelines and dialects form a closed set:

    GENERIC_SYNDICATION -> ATOM | RSS   (feedparser auto-detection)
    VENDOR_JSON         -> VENDOR_JSON  (Danbooru posts.json)
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import feedparser

from config import get_logger
from errors import ParseError
from fetcher import PipelineKind
from notifications import ItemIdentity, NormalizedItem
from utils import (
    clean_html_to_markdown,
    first_image_src,
    humanize_list,
    humanize_tag,
    split_tags,
    titleize_tag,
)

logger = get_logger("normalizers")

FOOTER_SEPARATOR = " • "

# Known upstream bug: this icon is advertised with a trailing slash that 404s
BROKEN_ICON_URLS = {
    "https://www.redditstatic.com/icon.png/": "https://www.redditstatic.com/icon.png",
}

DANBOORU_POST_URL = "https://danbooru.donmai.us/posts/{id}/"
DANBOORU_ICON_URL = "https://danbooru.donmai.us/packs/static/danbooru-logo-128x128-ea111b6658173e847734.png"
EMBEDDABLE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "webp"})


class FeedDialect(Enum):
    ATOM = "atom"
    RSS = "rss"
    VENDOR_JSON = "vendor_json"


@dataclass(frozen=True)
class FeedEntry:
    """One upstream item: its natural identity and the raw record."""

    identity: ItemIdentity
    record: Any
    timestamp: Optional[datetime] = None


@dataclass
class ParsedFeed:
    kind: PipelineKind
    dialect: FeedDialect
    entries: List[FeedEntry]
    title: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def render(self, entry: FeedEntry, display_title: Optional[str] = None) -> NormalizedItem:
        """Render an entry for a subscriber (display_title overrides the feed title)."""
        return _RENDERERS[self.dialect](self, entry, display_title)


def parse_feed(kind: PipelineKind, url: str, content: bytes) -> ParsedFeed:
    """Parse a fetched body with the pipeline selected for its URL.

    Raises:
        ParseError: if the content is not a feed the pipeline understands.
    """
    if kind is PipelineKind.VENDOR_JSON:
        return _parse_vendor_json(url, content)
    return _parse_syndication(url, content)


# ----------------------------------------------------------------------
# Generic syndication (Atom / RSS family)
# ----------------------------------------------------------------------

def _struct_to_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime(*tuple(value)[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _detect_dialect(version: str) -> Optional[FeedDialect]:
    if version.startswith("atom"):
        return FeedDialect.ATOM
    if version.startswith("rss"):
        return FeedDialect.RSS
    return None


def _entry_identity(entry: Any) -> Optional[str]:
    for key in ("id", "link", "title"):
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _entry_timestamp(entry: Any) -> Optional[datetime]:
    # Atom: published, else updated. RSS: pubDate, else dc:date (feedparser maps it to updated)
    return _struct_to_datetime(entry.get("published_parsed")) or _struct_to_datetime(entry.get("updated_parsed"))


def _parse_syndication(url: str, content: bytes) -> ParsedFeed:
    parsed = feedparser.parse(content, sanitize_html=True, resolve_relative_uris=True)
    version = parsed.get("version") or ""
    dialect = _detect_dialect(version)
    if dialect is None:
        reason = "unknown feed format"
        if parsed.get("bozo") and parsed.get("bozo_exception") is not None:
            reason = f"{reason} ({parsed.bozo_exception})"
        raise ParseError(url, reason)

    if parsed.get("bozo") and parsed.get("bozo_exception") is not None:
        logger.warning(f"Feed parsing warning for {url}: {parsed.bozo_exception}")

    entries: List[FeedEntry] = []
    for raw in parsed.entries:
        identity = _entry_identity(raw)
        if identity is None:
            logger.warning(f"Skipping entry without id, link or title in {url}")
            continue
        entries.append(FeedEntry(identity=identity, record=raw, timestamp=_entry_timestamp(raw)))

    # Only sort when every entry is dated; a partial sort would scramble feed order
    if entries and all(e.timestamp is not None for e in entries):
        entries.sort(key=lambda e: e.timestamp, reverse=True)

    feed_info = parsed.get("feed", {})
    image = feed_info.get("image") or {}
    meta = {
        "icon": feed_info.get("icon"),
        "image": image.get("href") or image.get("url"),
    }
    logger.debug(f"Parsed {url} as {version} with {len(entries)} entries")
    return ParsedFeed(
        kind=PipelineKind.GENERIC_SYNDICATION,
        dialect=dialect,
        entries=entries,
        title=feed_info.get("title"),
        meta=meta,
    )


def _embedded_image(record: Any) -> Optional[str]:
    """First <img> in html/xhtml content, else any '*thumbnail*' element with a url."""
    for block in record.get("content") or []:
        if "html" in (block.get("type") or "") and block.get("value"):
            src = first_image_src(block["value"])
            if src:
                return src

    for key, value in record.items():
        if "thumbnail" not in key.lower():
            continue
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            if isinstance(candidate, dict) and candidate.get("url"):
                return candidate["url"]
    return None


def _footer_text(display_title: Optional[str], feed_title: Optional[str], identity: ItemIdentity) -> Optional[str]:
    label = (display_title or "").strip() or (feed_title or "").strip()
    if not label:
        return None
    return f"{label}{FOOTER_SEPARATOR}{identity}"


def _description(record: Any) -> Optional[str]:
    summary = record.get("summary")
    if not summary:
        return None
    return clean_html_to_markdown(summary, base_url=record.get("link")) or None


def _render_atom(feed: ParsedFeed, entry: FeedEntry, display_title: Optional[str]) -> NormalizedItem:
    record = entry.record
    author_detail = record.get("author_detail") or {}
    author = author_detail.get("name") or record.get("author")

    icon = feed.meta.get("icon")
    if icon:
        icon = BROKEN_ICON_URLS.get(icon, icon)

    return NormalizedItem(
        identity=entry.identity,
        title=record.get("title"),
        author=author,
        author_url=author_detail.get("href") if author else None,
        link=record.get("link"),
        description=_description(record),
        timestamp=entry.timestamp,
        image_url=_embedded_image(record),
        footer=_footer_text(display_title, feed.title, entry.identity),
        footer_icon_url=icon or None,
    )


def _render_rss(feed: ParsedFeed, entry: FeedEntry, display_title: Optional[str]) -> NormalizedItem:
    record = entry.record
    return NormalizedItem(
        identity=entry.identity,
        title=record.get("title"),
        author=record.get("author"),
        link=record.get("link"),
        description=_description(record),
        timestamp=entry.timestamp,
        image_url=_embedded_image(record),
        thumbnail_url=feed.meta.get("image"),
        footer=_footer_text(display_title, feed.title, entry.identity),
    )


# ----------------------------------------------------------------------
# Vendor JSON (Danbooru posts.json)
# ----------------------------------------------------------------------

def _parse_iso8601(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_vendor_json(url: str, content: bytes) -> ParsedFeed:
    try:
        posts = json.loads(content)
    except (ValueError, UnicodeDecodeError) as e:
        raise ParseError(url, f"malformed JSON: {e}") from e
    if not isinstance(posts, list):
        raise ParseError(url, f"expected a JSON array of posts, got {type(posts).__name__}")

    entries: List[FeedEntry] = []
    for post in posts:
        post_id = post.get("id") if isinstance(post, dict) else None
        if not isinstance(post_id, int) or isinstance(post_id, bool):
            logger.warning(f"Skipping post without a numeric id in {url}")
            continue
        entries.append(FeedEntry(identity=post_id, record=post, timestamp=_parse_iso8601(post.get("created_at"))))

    return ParsedFeed(kind=PipelineKind.VENDOR_JSON, dialect=FeedDialect.VENDOR_JSON, entries=entries)


def best_variant(variants: Any) -> Optional[Dict[str, Any]]:
    """Largest embeddable variant by pixel area; the first of equal maxima wins."""
    candidates = [
        v for v in (variants or [])
        if isinstance(v, dict) and str(v.get("file_ext") or "").lower() in EMBEDDABLE_EXTENSIONS
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda v: (v.get("width") or 0) * (v.get("height") or 0))


def _variant_description(file_ext: str, variant: Optional[Dict[str, Any]]) -> str:
    prefix = f"{file_ext.upper()} file | " if file_ext else ""
    if variant is None:
        return f"{prefix}no embeddable preview"
    quality = variant.get("type") or "unknown"
    text = f"{prefix}embed is {quality} quality"
    if quality != "original":
        text += f" ({str(variant.get('file_ext') or '').upper()} file)"
    return text


def _render_vendor_json(feed: ParsedFeed, entry: FeedEntry, display_title: Optional[str]) -> NormalizedItem:
    post = entry.record
    media_asset = post.get("media_asset") or {}
    variant = best_variant(media_asset.get("variants"))
    file_ext = media_asset.get("file_ext") or post.get("file_ext") or ""

    artists = humanize_list(humanize_tag(tag) for tag in split_tags(post.get("tag_string_artist")))
    characters = humanize_list(titleize_tag(tag) for tag in split_tags(post.get("tag_string_character")))
    title = (display_title or "").strip()

    return NormalizedItem(
        identity=entry.identity,
        title=characters or None,
        author=artists or None,
        link=DANBOORU_POST_URL.format(id=entry.identity),
        description=_variant_description(file_ext, variant),
        timestamp=entry.timestamp,
        image_url=variant.get("url") if variant else None,
        footer=title or None,
        footer_icon_url=DANBOORU_ICON_URL if title else None,
    )


_RENDERERS: Dict[FeedDialect, Callable[[ParsedFeed, FeedEntry, Optional[str]], NormalizedItem]] = {
    FeedDialect.ATOM: _render_atom,
    FeedDialect.RSS: _render_rss,
    FeedDialect.VENDOR_JSON: _render_vendor_json,
}
