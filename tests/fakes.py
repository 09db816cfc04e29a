"""Feed documents and fake collaborators shared by the tests."""

import json
from typing import Dict, Iterable, List, Optional, Tuple, Union

from errors import DeliveryError, DestinationUnreachable, FetchError
from models import Destination, Subscription


def atom_feed(items: Iterable[Tuple[str, Optional[str]]], title: str = "Example Feed", icon: Optional[str] = None) -> bytes:
    """Build an Atom document from (id, ISO published timestamp or None) pairs."""
    entries = []
    for item_id, published in items:
        dated = f"<published>{published}</published>" if published else ""
        entries.append(
            f"""
  <entry>
    <id>urn:item:{item_id}</id>
    <title>Item {item_id}</title>
    <link href="https://example.com/items/{item_id}"/>
    {dated}
    <summary>Summary of {item_id}</summary>
  </entry>"""
        )
    icon_xml = f"<icon>{icon}</icon>" if icon else ""
    return f"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>{title}</title>
  <id>urn:feed:example</id>
  <updated>2024-01-01T00:00:00Z</updated>
  {icon_xml}
  {''.join(entries)}
</feed>""".encode("utf-8")


def numbered_items(numbers: Iterable[int]) -> List[Tuple[str, str]]:
    """Items i<n> published on consecutive days so higher numbers are newer."""
    return [(f"i{n}", f"2024-01-{n:02d}T00:00:00Z") for n in numbers]


def danbooru_posts(*posts: Dict) -> bytes:
    return json.dumps(list(posts)).encode("utf-8")


class FakeStore:
    """In-memory stand-in for SubscriptionStore."""

    def __init__(self, subscriptions: Iterable[Subscription] = ()):
        self.subscriptions = list(subscriptions)
        self.removed: List[str] = []

    async def list_subscriptions(self) -> List[Subscription]:
        return list(self.subscriptions)

    async def remove_subscriptions_for_destination(self, destination_id: str) -> int:
        self.removed.append(destination_id)
        before = len(self.subscriptions)
        self.subscriptions = [s for s in self.subscriptions if s.destination_id != destination_id]
        return before - len(self.subscriptions)


class FakeDeliverer:
    """Records deliveries; destinations can be made missing, gone or failing."""

    def __init__(self, destination_ids: Iterable[str] = (), colors: Optional[Dict[str, int]] = None):
        colors = colors or {}
        self.destinations = {
            d: Destination(d, f"https://hooks.example.com/{d}", color=colors.get(d)) for d in destination_ids
        }
        self.gone: set = set()
        self.failing: set = set()
        self.sent: Dict[str, list] = {}
        self.resolved: List[str] = []

    async def resolve_destination(self, destination_id: str) -> Optional[Destination]:
        self.resolved.append(destination_id)
        return self.destinations.get(destination_id)

    async def deliver(self, destination: Destination, payloads) -> None:
        if destination.destination_id in self.gone:
            raise DestinationUnreachable(destination.destination_id, "HTTP 404")
        if destination.destination_id in self.failing:
            raise DeliveryError(destination.destination_id, "HTTP 500")
        self.sent.setdefault(destination.destination_id, []).extend(payloads)

    def titles(self, destination_id: str) -> List[str]:
        return [p.title for p in self.sent.get(destination_id, [])]


class FakeFetcher:
    """Serves canned bodies; a URL mapped to an exception string fails."""

    def __init__(self, bodies: Optional[Dict[str, Union[bytes, str]]] = None):
        self.bodies: Dict[str, Union[bytes, str]] = dict(bodies or {})
        self.requests: List[str] = []
        self.initialized = 0
        self.closed = 0

    async def initialize(self) -> None:
        self.initialized += 1

    async def close(self) -> None:
        self.closed += 1

    async def fetch(self, url: str) -> bytes:
        self.requests.append(url)
        body = self.bodies.get(url)
        if body is None:
            raise FetchError(url, "HTTP 404")
        if isinstance(body, str):
            raise FetchError(url, body)
        return body
