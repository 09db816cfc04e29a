#!/usr/bin/env python3
"""
Feed Notifier host

Wires the subscription store, webhook transport, fetcher and poller together
and exposes them on the command line:

- run: sync subscriptions.yaml and run a single poll cycle
- scheduled: sync, then poll every POLL_INTERVAL_SECONDS until interrupted
- status: show subscription and destination counts
- subscribe / unsubscribe / add-destination: manage the store
- classify: show which pipeline a feed URL goes through
"""

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from config import config, get_logger, parse_color
from delivery import WebhookDeliverer
from fetcher import FeedFetcher, classify_feed
from models import SubscriptionStore
from poller import CycleReport, FeedPoller
from scheduler import create_scheduler
from telemetry import init_telemetry, get_tracer, trace_span
from tracker import url_fingerprint
from utils import validate_url

# Module-specific logger
logger = get_logger("orchestrator")
init_telemetry("feed-notifier-orchestrator")
_tracer = get_tracer("orchestrator")


class FeedNotifierService:
    """Owns the long-lived collaborators for one process."""

    def __init__(self, db_path: Optional[str] = None, subscriptions_path: Optional[str] = None) -> None:
        self.store = SubscriptionStore(db_path)
        self.subscriptions_path = subscriptions_path
        self.deliverer = WebhookDeliverer(self.store)
        self.poller = FeedPoller(self.store, self.deliverer, fetcher=FeedFetcher())

    async def open(self) -> None:
        await self.store.initialize()
        await self.deliverer.initialize()

    async def close(self) -> None:
        await self.deliverer.close()
        self.poller.close()
        await self.store.close()

    async def sync_subscriptions(self) -> None:
        """Upsert the destinations and subscriptions declared in subscriptions.yaml."""
        declared = config.load_subscriptions_file(self.subscriptions_path)
        if declared['destinations'] or declared['subscriptions']:
            await self.store.sync_from_config(declared)

    @trace_span("service.run_once", tracer_name="orchestrator")
    async def run_once(self) -> CycleReport:
        """Run exactly one poll cycle."""
        logger.info("🚀 Running a single poll cycle")
        await self.open()
        try:
            await self.sync_subscriptions()
            return await self.poller.poll_feeds()
        finally:
            await self.close()

    async def run_scheduled(self) -> None:
        """Poll on a fixed interval until SIGINT or SIGTERM."""
        await self.open()
        try:
            await self.sync_subscriptions()
            scheduler = create_scheduler(self.poller)

            stop_requested = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop_requested.set)
                except NotImplementedError:
                    # Signal handlers are unavailable on some platforms; KeyboardInterrupt still works
                    pass

            task = scheduler.start()
            waiter = asyncio.create_task(stop_requested.wait())
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            waiter.cancel()
            logger.info("👋 Stopping scheduler")
            await scheduler.stop()
        finally:
            await self.close()

    async def check_status(self) -> dict:
        """Collect store statistics for the status command."""
        await self.store.initialize()
        try:
            subscriptions = await self.store.list_subscriptions()
            destinations = await self.store.list_destinations()
        finally:
            await self.store.close()

        known = {d.destination_id for d in destinations}
        orphaned = sorted({s.destination_id for s in subscriptions if s.destination_id not in known})
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'database_path': config.DATABASE_PATH,
            'subscriptions': len(subscriptions),
            'feed_urls': len({url_fingerprint(s.feed_url) for s in subscriptions}),
            'destinations': len(destinations),
            'orphaned_destinations': orphaned,
            'poll_interval_seconds': config.POLL_INTERVAL_SECONDS,
        }

    def print_status(self, status: dict) -> None:
        """Print formatted status information."""
        print("\n📊 Feed Notifier Status")
        print(f"⏰ {status['timestamp']}")
        print(f"💾 Database: {status['database_path']}")
        print(f"   📰 Feed URLs: {status['feed_urls']}")
        print(f"   🔔 Subscriptions: {status['subscriptions']}")
        print(f"   📮 Destinations: {status['destinations']}")
        if status['orphaned_destinations']:
            print(f"   ⚠️ Unregistered destinations: {', '.join(status['orphaned_destinations'])}")
        print(f"🕐 Poll interval: {status['poll_interval_seconds']}s")

    async def subscribe(self, feed_url: str, destination_id: str, title: Optional[str] = None) -> bool:
        await self.store.initialize()
        try:
            if await self.store.get_destination(destination_id) is None:
                logger.warning(f"Destination {destination_id} is not registered; it will be pruned on the next cycle")
            return await self.store.add_subscription(feed_url, destination_id, title)
        finally:
            await self.store.close()

    async def unsubscribe(self, feed_url: str, destination_id: str) -> int:
        await self.store.initialize()
        try:
            return await self.store.remove_subscription(feed_url, destination_id)
        finally:
            await self.store.close()

    async def add_destination(self, destination_id: str, webhook_url: str,
                              name: Optional[str] = None, color: Optional[int] = None) -> bool:
        await self.store.initialize()
        try:
            return await self.store.register_destination(destination_id, webhook_url, name, color)
        finally:
            await self.store.close()


def _print_report(report: CycleReport) -> None:
    print(f"\n📡 Polled {report.feeds_polled} feeds in {report.duration:.1f}s")
    print(f"   ❌ Failed: {report.feeds_failed}")
    print(f"   🔔 Notifications delivered: {report.deliveries}")
    if report.faulted_destinations:
        print(f"   🗑️ Unreachable destinations: {', '.join(report.faulted_destinations)}"
              f" ({report.removed_subscriptions} subscriptions removed)")


def _url_arg(value: str) -> str:
    if not validate_url(value):
        raise argparse.ArgumentTypeError(f"not a valid http(s) URL: {value}")
    return value.strip()


def _color_arg(value: str) -> int:
    color = parse_color(value)
    if color is None:
        raise argparse.ArgumentTypeError(f"not a valid RGB color: {value}")
    return color


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Feed Notifier')
    parser.add_argument('--database', type=str, help='SQLite database path (default: DATABASE_PATH)')
    parser.add_argument('--subscriptions', type=str,
                        help='subscriptions.yaml path (default: SUBSCRIPTIONS_CONFIG_PATH)')
    commands = parser.add_subparsers(dest='mode', required=True, metavar='mode')

    commands.add_parser('run', help='Run a single poll cycle')
    commands.add_parser('scheduled', help='Poll on a fixed interval until interrupted')
    commands.add_parser('status', help='Show subscription and destination counts')

    subscribe = commands.add_parser('subscribe', help='Subscribe a destination to a feed')
    subscribe.add_argument('url', type=_url_arg)
    subscribe.add_argument('destination')
    subscribe.add_argument('--title', help='Display title used in notification footers')

    unsubscribe = commands.add_parser('unsubscribe', help='Remove a subscription')
    unsubscribe.add_argument('url', type=_url_arg)
    unsubscribe.add_argument('destination')

    add_destination = commands.add_parser('add-destination', help='Register or update a webhook destination')
    add_destination.add_argument('id')
    add_destination.add_argument('webhook_url', type=_url_arg)
    add_destination.add_argument('--name')
    add_destination.add_argument('--color', type=_color_arg, help='Accent color (e.g. #ff6600)')

    classify = commands.add_parser('classify', help='Show the pipeline used for a feed URL')
    classify.add_argument('url')

    return parser


def main(argv: Optional[list] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    service = FeedNotifierService(args.database, args.subscriptions)

    try:
        if args.mode == 'run':
            report = asyncio.run(service.run_once())
            _print_report(report)
            sys.exit(0 if report.feeds_failed == 0 else 1)

        elif args.mode == 'scheduled':
            logger.info(f"🕐 Starting scheduled mode (every {config.POLL_INTERVAL_SECONDS}s)")
            logger.info(f"Configuration: {config.get_config_summary()}")
            asyncio.run(service.run_scheduled())

        elif args.mode == 'status':
            status = asyncio.run(service.check_status())
            service.print_status(status)

        elif args.mode == 'subscribe':
            ok = asyncio.run(service.subscribe(args.url, args.destination, args.title))
            print(f"{'✅ Subscribed' if ok else '❌ Failed to subscribe'} {args.destination} to {args.url}")
            sys.exit(0 if ok else 1)

        elif args.mode == 'unsubscribe':
            removed = asyncio.run(service.unsubscribe(args.url, args.destination))
            print(f"Removed {removed} subscription(s)")
            sys.exit(0 if removed else 1)

        elif args.mode == 'add-destination':
            ok = asyncio.run(service.add_destination(args.id, args.webhook_url, args.name, args.color))
            print(f"{'✅ Registered' if ok else '❌ Failed to register'} destination {args.id}")
            sys.exit(0 if ok else 1)

        elif args.mode == 'classify':
            print(classify_feed(args.url).name)

    except KeyboardInterrupt:
        logger.info("👋 Feed notifier shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
