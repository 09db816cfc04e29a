from datetime import datetime, timezone

import pytest

from errors import ParseError
from fakes import atom_feed, numbered_items
from fetcher import PipelineKind
from normalizers import FeedDialect, parse_feed

URL = "https://example.com/feed"


def parse(content: bytes):
    return parse_feed(PipelineKind.GENERIC_SYNDICATION, URL, content)


ATOM_WITH_DETAILS = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Reddit Example</title>
  <id>urn:feed:reddit</id>
  <updated>2024-01-02T00:00:00Z</updated>
  <icon>https://www.redditstatic.com/icon.png/</icon>
  <entry>
    <id>t3_abc</id>
    <title>A post with a picture</title>
    <link href="https://www.reddit.com/r/example/comments/abc/"/>
    <author><name>/u/someone</name><uri>https://www.reddit.com/user/someone</uri></author>
    <published>2024-01-02T10:00:00Z</published>
    <updated>2024-01-02T11:00:00Z</updated>
    <summary type="html">&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt; &lt;a href="/r/example"&gt;sub&lt;/a&gt;&lt;/p&gt;</summary>
    <content type="html">&lt;p&gt;&lt;img src="https://i.example.com/picture.jpg" alt=""/&gt;&lt;/p&gt;</content>
  </entry>
  <entry>
    <id>t3_def</id>
    <title>Only updated</title>
    <link href="https://www.reddit.com/r/example/comments/def/"/>
    <updated>2024-01-01T08:00:00Z</updated>
  </entry>
</feed>
"""

RSS_WITH_IMAGE = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Example RSS</title>
    <link>https://example.com/</link>
    <description>Example</description>
    <image>
      <url>https://example.com/logo.png</url>
      <title>Example RSS</title>
      <link>https://example.com/</link>
    </image>
    <item>
      <guid>https://example.com/posts/1</guid>
      <title>First</title>
      <link>https://example.com/posts/1</link>
      <author>editor@example.com (Editor)</author>
      <description>&lt;p&gt;First &lt;script&gt;alert(1)&lt;/script&gt;post&lt;/p&gt;</description>
      <pubDate>Mon, 01 Jan 2024 00:00:00 +0000</pubDate>
      <media:thumbnail url="https://example.com/thumbs/1.jpg"/>
    </item>
    <item>
      <guid>https://example.com/posts/2</guid>
      <title>Second</title>
      <link>https://example.com/posts/2</link>
    </item>
  </channel>
</rss>
"""


def rss_with_dates(dates):
    items = "".join(
        f"<item><guid>urn:{n}</guid><title>Item {n}</title>{f'<pubDate>{d}</pubDate>' if d else ''}</item>"
        for n, d in enumerate(dates)
    )
    return (
        '<?xml version="1.0"?><rss version="2.0"><channel><title>T</title>'
        f'<link>https://example.com/</link><description>D</description>{items}</channel></rss>'
    ).encode("utf-8")


def test_atom_feed_is_detected_and_rendered():
    feed = parse(ATOM_WITH_DETAILS)

    assert feed.dialect is FeedDialect.ATOM
    assert [e.identity for e in feed.entries] == ["t3_abc", "t3_def"]

    item = feed.render(feed.entries[0])
    assert item.title == "A post with a picture"
    assert item.author == "/u/someone"
    assert item.author_url == "https://www.reddit.com/user/someone"
    assert item.link == "https://www.reddit.com/r/example/comments/abc/"
    assert item.timestamp == datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)
    assert item.image_url == "https://i.example.com/picture.jpg"
    assert item.footer == "Reddit Example • t3_abc"
    assert "**world**" in item.description


def test_atom_known_broken_icon_is_corrected():
    feed = parse(ATOM_WITH_DETAILS)

    item = feed.render(feed.entries[0])

    assert item.footer_icon_url == "https://www.redditstatic.com/icon.png"


def test_atom_timestamp_falls_back_to_updated():
    feed = parse(ATOM_WITH_DETAILS)

    assert feed.entries[1].timestamp == datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def test_display_title_overrides_feed_title_in_footer():
    feed = parse(ATOM_WITH_DETAILS)

    item = feed.render(feed.entries[0], display_title="My Subreddit")

    assert item.footer == "My Subreddit • t3_abc"


def test_rss_feed_uses_feed_image_as_thumbnail():
    feed = parse(RSS_WITH_IMAGE)

    assert feed.dialect is FeedDialect.RSS
    first = feed.render(feed.entries[0])
    assert first.thumbnail_url == "https://example.com/logo.png"
    assert first.image_url == "https://example.com/thumbs/1.jpg"
    assert first.footer == "Example RSS • https://example.com/posts/1"
    assert "alert" not in first.description


def test_rss_item_without_date_keeps_feed_order():
    feed = parse(RSS_WITH_IMAGE)

    assert [e.identity for e in feed.entries] == ["https://example.com/posts/1", "https://example.com/posts/2"]
    assert feed.entries[1].timestamp is None


def test_fully_dated_feed_is_sorted_newest_first():
    feed = parse(rss_with_dates([
        "Mon, 01 Jan 2024 00:00:00 +0000",
        "Wed, 03 Jan 2024 00:00:00 +0000",
        "Tue, 02 Jan 2024 00:00:00 +0000",
    ]))

    assert [e.identity for e in feed.entries] == ["urn:1", "urn:2", "urn:0"]


def test_partially_dated_feed_is_not_sorted():
    feed = parse(rss_with_dates([
        "Mon, 01 Jan 2024 00:00:00 +0000",
        None,
        "Wed, 03 Jan 2024 00:00:00 +0000",
    ]))

    assert [e.identity for e in feed.entries] == ["urn:0", "urn:1", "urn:2"]


def test_atom_entries_sorted_by_published():
    feed = parse(atom_feed(numbered_items([1, 3, 2])))

    assert [e.identity for e in feed.entries] == ["urn:item:i3", "urn:item:i2", "urn:item:i1"]


def test_unknown_feed_format_is_rejected():
    with pytest.raises(ParseError) as exc_info:
        parse(b"<html><body><p>Not a feed</p></body></html>")

    assert exc_info.value.url == URL


def test_entries_without_identity_are_skipped():
    feed = parse(
        b'<?xml version="1.0"?><rss version="2.0"><channel><title>T</title>'
        b'<link>https://example.com/</link><description>D</description>'
        b'<item><description>nothing to identify me</description></item>'
        b'<item><title>Titled</title></item></channel></rss>'
    )

    assert [e.identity for e in feed.entries] == ["Titled"]
