#!/usr/bin/env python3
"""
Utility functions for the feed notification system.

This module contains shared helpers used by the normalizers and the poller:
HTML sanitizing, text truncation and small tag-humanizing helpers.
"""

from typing import Iterable, List, Optional
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from markdownify import markdownify as md

from config import get_logger

# Module-specific logger
logger = get_logger("utils")


def validate_url(url: str) -> bool:
    """Validate if a string is a properly formatted URL.

    Args:
        url: The URL string to validate

    Returns:
        True if the URL appears to be valid, False otherwise
    """
    if not url or not isinstance(url, str):
        return False

    url = url.strip()
    if not url:
        return False

    return url.startswith(('http://', 'https://')) and '.' in url


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate a string to a maximum length, adding a suffix if truncated.

    Args:
        text: The text to potentially truncate
        max_length: Maximum allowed length (including suffix)
        suffix: Suffix to add when truncating

    Returns:
        The original text or truncated version with suffix
    """
    if not text or len(text) <= max_length:
        return text

    if len(suffix) >= max_length:
        return text[:max_length]

    return text[:max_length - len(suffix)] + suffix


def humanize_tag(tag: str) -> str:
    """Turn a booru-style tag into words: underscores become spaces."""
    return re.sub(r'\s+', ' ', tag.replace('_', ' ')).strip()


def titleize_tag(tag: str) -> str:
    """Humanize a tag and capitalize each word ("hatsune_miku" -> "Hatsune Miku")."""
    words = humanize_tag(tag).split(' ')
    return ' '.join(_capitalize_word(word) for word in words if word)


def _capitalize_word(word: str) -> str:
    # Capitalize the first letter even behind leading punctuation, e.g. "(cosplay)"
    for i, ch in enumerate(word):
        if ch.isalpha():
            return word[:i] + ch.upper() + word[i + 1:]
    return word


def humanize_list(values: Iterable[str], conjunction: str = "and") -> str:
    """Join values as an English list: "a", "a and b", "a, b, and c"."""
    items: List[str] = [v for v in values if v]
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    if len(items) == 2:
        return f"{items[0]} {conjunction} {items[1]}"
    return f"{', '.join(items[:-1])}, {conjunction} {items[-1]}"


def split_tags(tag_string: Optional[str]) -> List[str]:
    """Split a space separated tag string, ignoring blanks."""
    if not tag_string:
        return []
    return [tag for tag in tag_string.split(' ') if tag]


def first_image_src(html_content: str) -> Optional[str]:
    """Return the src of the first <img> element in an HTML fragment, if any."""
    if not html_content:
        return None
    soup = BeautifulSoup(html_content, 'html.parser')
    for img in soup.find_all('img'):
        src = (img.get('src') or '').strip()
        if src:
            return src
    return None


def clean_html_to_markdown(html_content: str, base_url: Optional[str] = None) -> str:
    """Sanitize HTML content and convert it to Markdown.

    Args:
        html_content: Raw HTML to sanitize
        base_url: Optional base URL used to resolve relative href/src values

    Behavior:
    - Removes dangerous elements (script/style/iframe/etc.)
    - Strips inline event handlers and javascript: URLs
    - Removes images entirely (notifications carry the image separately)
    - Resolves relative href to absolute URLs when ``base_url`` is provided; otherwise
      non-absolute links are neutralized to ``#``
    - Converts resulting HTML to Markdown with markdownify
    """
    if not html_content:
        return ""

    try:
        soup = BeautifulSoup(html_content, 'html.parser')

        for tag in soup([
            "script", "style", "iframe", "form", "object", "embed", "noscript",
            "frame", "frameset", "applet", "meta", "base", "link", "img"
        ]):
            tag.decompose()

        # Remove on* attributes and javascript: URLs
        for tag in soup.find_all(True):
            for attr in list(tag.attrs):
                if attr.lower().startswith('on'):
                    del tag[attr]
                elif attr.lower() == 'href' and str(tag[attr]).lower().startswith('javascript:'):
                    del tag[attr]

        for tag in soup.find_all('a'):
            if not tag.has_attr('href'):
                continue
            value = str(tag['href'])
            if value.startswith(('http://', 'https://', 'mailto:')):
                continue
            resolved = urljoin(base_url, value) if base_url else None
            if resolved and resolved.startswith(('http://', 'https://')):
                tag['href'] = resolved
            else:
                tag['href'] = '#'

        # Disable line wrapping so URLs are never split across lines
        return md(str(soup), heading_style="ATX", wrap_width=0).strip()
    except Exception as e:  # noqa: BLE001
        logger.error(f"Error cleaning HTML to Markdown: {e}")
        return html_content
