#!/usr/bin/env python3
"""
Feed polling engine: deduplication and fan-out.

One poll cycle loads every subscription, groups them by feed URL, fetches
each URL once, and delivers the items nobody has seen yet to every
subscriber of that URL. The rules that keep it correct across cycles:

- The first cycle that sees a URL seeds the tracker silently. A restart must
  never re-announce a feed's whole backlog.
- Every item in a fetch goes into the processed set, delivered or not, and
  that set replaces the URL's seen set at the end of the group. Delivery is
  therefore at-most-once: a failed send is not retried next cycle.
- Failures are contained: a broken feed skips its group, a broken
  destination skips that subscriber. Destinations that no longer exist are
  reported once per cycle and their subscriptions removed through the store.
"""

from asyncio import Semaphore, gather, get_running_loop
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from time import monotonic
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from config import config, get_logger
from errors import DeliveryError, DestinationUnreachable, FetchError, ParseError
from fetcher import FeedFetcher, classify_feed
from models import Subscription
from normalizers import FeedEntry, ParsedFeed, parse_feed
from notifications import render_payload
from telemetry import get_tracer, init_telemetry, trace_span
from tracker import ItemFingerprint, SeenItemTracker, item_fingerprint, url_fingerprint

# Module-specific logger
logger = get_logger("poller")
init_telemetry("feed-notifier-poller")
_tracer = get_tracer("poller")


@dataclass
class FeedGroup:
    """All subscriptions sharing one feed URL (compared case-insensitively)."""

    url: str
    url_fp: str
    subscriptions: List[Subscription] = field(default_factory=list)


@dataclass
class GroupResult:
    url: str
    ok: bool
    delivered: int = 0
    faulted: Set[str] = field(default_factory=set)


@dataclass
class CycleReport:
    """Outcome of one poll cycle."""

    feeds_polled: int = 0
    feeds_failed: int = 0
    feeds_skipped: int = 0
    deliveries: int = 0
    faulted_destinations: List[str] = field(default_factory=list)
    removed_subscriptions: int = 0
    duration: float = 0.0


def group_subscriptions(subscriptions: Sequence[Subscription]) -> List[FeedGroup]:
    """Group subscriptions by URL fingerprint, keeping first-seen order and spelling.

    A destination subscribed under several spellings of one URL is kept once.
    """
    groups: Dict[str, FeedGroup] = {}
    members: Dict[str, Set[str]] = {}
    for subscription in subscriptions:
        url_fp = url_fingerprint(subscription.feed_url)
        group = groups.get(url_fp)
        if group is None:
            group = groups[url_fp] = FeedGroup(url=subscription.feed_url.strip(), url_fp=url_fp)
            members[url_fp] = set()
        if subscription.destination_id in members[url_fp]:
            continue
        members[url_fp].add(subscription.destination_id)
        group.subscriptions.append(subscription)
    return list(groups.values())


def partition_entries(
    entries: Sequence[FeedEntry],
    previous: FrozenSet[ItemFingerprint],
    is_first_cycle: bool,
) -> Tuple[Set[ItemFingerprint], List[FeedEntry]]:
    """Split a fetch into (processed fingerprints, entries eligible for delivery).

    Every entry is processed. An entry is eligible only if the URL has been
    seen before and the entry was not in the previous seen set.
    """
    processed: Set[ItemFingerprint] = set()
    eligible: List[FeedEntry] = []
    for entry in entries:
        fp = item_fingerprint(entry.identity)
        already_known = fp in processed or fp in previous
        processed.add(fp)
        if is_first_cycle or already_known:
            continue
        eligible.append(entry)
    return processed, eligible


class FeedPoller:
    """Runs poll cycles against a subscription store and a transport.

    Collaborators (duck-typed):
        store: ``list_subscriptions()`` and ``remove_subscriptions_for_destination(id)``
        deliverer: ``resolve_destination(id)`` returning a destination or None,
            and ``deliver(destination, payloads)``
        fetcher: ``initialize()``, ``fetch(url)`` and ``close()``
    """

    def __init__(
        self,
        store: Any,
        deliverer: Any,
        fetcher: Optional[Any] = None,
        tracker: Optional[SeenItemTracker] = None,
        max_items_per_destination: Optional[int] = None,
        concurrency: Optional[int] = None,
        default_color: Optional[int] = None,
    ) -> None:
        self.store = store
        self.deliverer = deliverer
        self.fetcher = fetcher if fetcher is not None else FeedFetcher()
        self.tracker = tracker if tracker is not None else SeenItemTracker()
        self.max_items_per_destination = max_items_per_destination or config.MAX_ITEMS_PER_DESTINATION
        self.concurrency = concurrency or config.FETCH_CONCURRENCY
        self.default_color = config.DEFAULT_EMBED_COLOR if default_color is None else default_color
        self.executor = ThreadPoolExecutor(max_workers=self.concurrency)

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in the parser thread pool."""
        loop = get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    def close(self) -> None:
        self.executor.shutdown(wait=False)

    @trace_span("poll_cycle", tracer_name="poller")
    async def poll_feeds(self, should_stop: Optional[Callable[[], bool]] = None) -> CycleReport:
        """Run one complete cycle over every subscribed feed URL.

        Args:
            should_stop: Optional cancellation check, consulted before each
                feed group starts. Groups already running are allowed to finish.
        """
        started = monotonic()
        report = CycleReport()

        subscriptions = await self.store.list_subscriptions()
        groups = group_subscriptions(subscriptions)
        logger.info(f"Polling {len(groups)} feeds for {len(subscriptions)} subscriptions")

        semaphore = Semaphore(self.concurrency)

        async def run_group(group: FeedGroup) -> Optional[GroupResult]:
            async with semaphore:
                if should_stop is not None and should_stop():
                    return None
                return await self.process_group(group)

        await self.fetcher.initialize()
        try:
            results = await gather(*(run_group(group) for group in groups))
        finally:
            await self.fetcher.close()

        faulted: Set[str] = set()
        for result in results:
            if result is None:
                report.feeds_skipped += 1
                continue
            report.feeds_polled += 1
            if not result.ok:
                report.feeds_failed += 1
            report.deliveries += result.delivered
            faulted |= result.faulted

        report.faulted_destinations = sorted(faulted)
        report.removed_subscriptions = await self._prune_destinations(report.faulted_destinations)
        report.duration = monotonic() - started

        if report.feeds_skipped:
            logger.info(f"Cancellation requested; skipped {report.feeds_skipped} feeds this cycle")
        logger.info(
            f"Poll cycle finished in {report.duration:.1f}s: {report.feeds_polled} feeds, "
            f"{report.feeds_failed} failed, {report.deliveries} notifications delivered, "
            f"{len(report.faulted_destinations)} unreachable destinations"
        )
        return report

    async def _prune_destinations(self, destination_ids: Sequence[str]) -> int:
        removed = 0
        for destination_id in destination_ids:
            logger.warning(f"Destination {destination_id} is unreachable; removing its subscriptions")
            try:
                removed += await self.store.remove_subscriptions_for_destination(destination_id) or 0
            except Exception as e:  # noqa: BLE001
                logger.error(f"Failed to remove subscriptions for destination {destination_id}: {e}")
        return removed

    @trace_span(
        "process_feed_group",
        tracer_name="poller",
        attr_from_args=lambda self, group: {
            "feed.url": group.url,
            "feed.subscribers": len(group.subscriptions),
        },
    )
    async def process_group(self, group: FeedGroup) -> GroupResult:
        """Fetch, parse, filter and fan out one feed URL. Never raises."""
        url = group.url
        try:
            return await self._process_group(group)
        except FetchError as e:
            logger.warning(f"Failed to fetch feed {url}: {e.reason}")
        except ParseError as e:
            logger.warning(f"Failed to process feed {url}: {e.reason}")
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Failed to process feed {url}: {e}", exc_info=True)
        return GroupResult(url=url, ok=False)

    async def _process_group(self, group: FeedGroup) -> GroupResult:
        url = group.url
        content = await self.fetcher.fetch(url)
        feed = await self.run_in_executor(parse_feed, classify_feed(url), url, content)

        is_first_cycle, previous = self.tracker.begin_cycle(group.url_fp)
        processed, eligible = partition_entries(feed.entries, previous, is_first_cycle)
        if is_first_cycle:
            logger.info(f"First cycle for {url}: tracking {len(processed)} items without notifying")
        elif eligible:
            logger.info(f"{len(eligible)} new items in {url}")

        outcomes = await gather(*(
            self._deliver_to_subscriber(url, feed, eligible, subscription)
            for subscription in group.subscriptions
        ))

        self.tracker.commit_cycle(group.url_fp, processed)

        result = GroupResult(url=url, ok=True)
        for delivered, faulted_id in outcomes:
            result.delivered += delivered
            if faulted_id is not None:
                result.faulted.add(faulted_id)
        return result

    async def _deliver_to_subscriber(
        self,
        url: str,
        feed: ParsedFeed,
        eligible: Sequence[FeedEntry],
        subscription: Subscription,
    ) -> Tuple[int, Optional[str]]:
        """Deliver eligible entries to one subscriber.

        Returns (notifications delivered, faulted destination id or None).
        """
        destination_id = subscription.destination_id
        try:
            destination = await self.deliverer.resolve_destination(destination_id)
            if destination is None:
                return 0, destination_id

            selected = eligible[:self.max_items_per_destination]
            if not selected:
                return 0, None

            color = getattr(destination, "color", None)
            if color is None:
                color = self.default_color
            payloads = [
                render_payload(feed.render(entry, subscription.display_title), color)
                for entry in selected
            ]
            await self.deliverer.deliver(destination, payloads)
            return len(payloads), None
        except DestinationUnreachable as e:
            logger.warning(f"Destination {destination_id} for feed {url} is gone: {e}")
            return 0, destination_id
        except DeliveryError as e:
            logger.warning(f"Failed to send feed {url} to destination {destination_id}: {e.reason}")
            return 0, None
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Failed to send feed {url} to destination {destination_id}: {e}", exc_info=True)
            return 0, None
