#!/usr/bin/env python3
"""
Database models and operations for the subscription store.

This module holds the subscription and destination records and the SQLite
store behind them. The poller only needs two operations from it
(list_subscriptions and remove_subscriptions_for_destination); the rest serve
the host CLI and the webhook transport.
"""

from dataclasses import dataclass
from os import path, access, R_OK
from time import time
from sqlite3 import connect, Row, Error
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Dict, List, Optional, Any

from config import config, get_logger
from telemetry import get_tracer, trace_span

# Module-specific logger
logger = get_logger("models")
_tracer = get_tracer("db")


@dataclass(frozen=True)
class Subscription:
    """A destination registered against a feed URL."""

    feed_url: str
    destination_id: str
    display_title: Optional[str] = None


@dataclass(frozen=True)
class Destination:
    """A resolved delivery target."""

    destination_id: str
    webhook_url: str
    name: Optional[str] = None
    color: Optional[int] = None


def initialize_database(conn) -> None:
    """Initialize the database with the defined schema from SQL file."""
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='subscriptions'")
        if cursor.fetchone() is None:
            logger.info("Database is new or empty. Initializing schema.")
            cursor.executescript(_read_schema_file())
            conn.commit()
            logger.info("Database schema initialized successfully")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        cursor.close()


def _read_schema_file() -> str:
    """Read the schema from the SQL file."""
    schema_path = config.SCHEMA_FILE_PATH

    try:
        if not path.isfile(schema_path):
            raise FileNotFoundError(f"Schema file not found at {schema_path}")

        if not access(schema_path, R_OK):
            raise PermissionError(f"No read permission for schema file at {schema_path}")

        file_size = path.getsize(schema_path)
        max_size = config.SCHEMA_FILE_SIZE_LIMIT_MB * 1024 * 1024
        if file_size > max_size:
            raise ValueError(f"Schema file too large: {file_size} bytes (limit: {max_size} bytes)")

        with open(schema_path, 'r') as f:
            return f.read()
    except Exception as e:
        logger.error(f"Error reading schema file: {e}")
        raise


class DatabaseQueue:
    """A queue for database operations so one coroutine owns the connection."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None
        self._ready = Event()

    async def start(self) -> None:
        """Start the database worker and wait until the schema is in place."""
        if self.running:
            return

        self.running = True
        self._ready.clear()
        self.worker_task = create_task(self._worker())
        await self._ready.wait()
        if self.conn is None:
            # Worker died during initialization; surface the failure
            self.running = False
            await self.worker_task
        logger.info("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker."""
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass

        if self.conn:
            self.conn.close()
            self.conn = None

        # Release anyone still waiting so they do not hang forever
        for event in self.events.values():
            event.set()
        self.events.clear()
        self.results.clear()

        logger.info("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing database operations."""
        if not path.isfile(self.db_path):
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")

        try:
            self.conn = connect(self.db_path)
            self.conn.row_factory = Row
            initialize_database(self.conn)
        except Exception:
            if self.conn:
                self.conn.close()
            self.conn = None
            raise
        finally:
            self._ready.set()

        while self.running:
            try:
                try:
                    operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                try:
                    method = getattr(self, operation_name, None)
                    if operation_name.startswith('_') or not callable(method):
                        self.results[operation_id] = {"error": f"Unknown operation: {operation_name}"}
                    else:
                        self.results[operation_id] = {"result": method(**params)}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    self.results[operation_id] = {"error": str(e)}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.info("Database worker cancelled")
                break

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {
            "db.operation": operation_name,
            "db.params.keys": ",".join(sorted(params.keys())) if params else "",
        },
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a database operation."""
        if not self.running:
            raise RuntimeError("Database worker is not running")

        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()

            result = self.results.pop(operation_id, None)
            if result is None:
                raise RuntimeError(f"Database stopped before {operation_name} completed")
            if "error" in result:
                raise RuntimeError(result["error"])
            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Destination Operations
    def register_destination(self, destination_id: str, webhook_url: str,
                             name: Optional[str] = None, color: Optional[int] = None) -> bool:
        """Insert or update a destination."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                INSERT INTO destinations (id, webhook_url, name, color) VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    webhook_url = excluded.webhook_url,
                    name = excluded.name,
                    color = excluded.color
                """,
                (destination_id, webhook_url, name, color)
            )
            self.conn.commit()
            return True
        except Error as e:
            logger.error(f"Error registering destination {destination_id}: {e}")
            return False

    def get_destination(self, destination_id: str) -> Optional[Destination]:
        """Look up a destination by id."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT id, webhook_url, name, color FROM destinations WHERE id = ?", (destination_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return Destination(row['id'], row['webhook_url'], row['name'], row['color'])

    def list_destinations(self) -> List[Destination]:
        """Return every registered destination."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT id, webhook_url, name, color FROM destinations ORDER BY id")
        return [Destination(row['id'], row['webhook_url'], row['name'], row['color']) for row in cursor.fetchall()]

    # Subscription Operations
    def add_subscription(self, feed_url: str, destination_id: str, display_title: Optional[str] = None) -> bool:
        """Subscribe a destination to a feed URL, refreshing the display title if it exists."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                INSERT INTO subscriptions (feed_url, destination_id, display_title, created) VALUES (?, ?, ?, ?)
                ON CONFLICT(feed_url, destination_id) DO UPDATE SET display_title = excluded.display_title
                """,
                (feed_url, destination_id, display_title, int(time()))
            )
            self.conn.commit()
            return True
        except Error as e:
            logger.error(f"Error subscribing {destination_id} to {feed_url}: {e}")
            return False

    def remove_subscription(self, feed_url: str, destination_id: str) -> int:
        """Remove one subscription; returns the number of rows deleted."""
        cursor = self.conn.cursor()
        cursor.execute(
            "DELETE FROM subscriptions WHERE feed_url = ? AND destination_id = ?",
            (feed_url, destination_id)
        )
        self.conn.commit()
        return cursor.rowcount

    def list_subscriptions(self) -> List[Subscription]:
        """Return every current subscription in insertion order."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT feed_url, destination_id, display_title FROM subscriptions ORDER BY id")
        return [
            Subscription(row['feed_url'], row['destination_id'], row['display_title'])
            for row in cursor.fetchall()
        ]

    def remove_subscriptions_for_destination(self, destination_id: str) -> int:
        """Remove every subscription of a destination; returns the number of rows deleted."""
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM subscriptions WHERE destination_id = ?", (destination_id,))
        self.conn.commit()
        deleted = cursor.rowcount
        if deleted:
            logger.info(f"Removed {deleted} subscriptions for destination {destination_id}")
        return deleted

    def count_subscriptions(self) -> int:
        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM subscriptions")
        return cursor.fetchone()[0]


class SubscriptionStore:
    """Async facade over DatabaseQueue used by the poller, transport and CLI."""

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db = DatabaseQueue(db_path or config.DATABASE_PATH)

    async def initialize(self) -> None:
        await self.db.start()

    async def close(self) -> None:
        await self.db.stop()

    async def list_subscriptions(self) -> List[Subscription]:
        return await self.db.execute('list_subscriptions')

    async def remove_subscriptions_for_destination(self, destination_id: str) -> int:
        return await self.db.execute('remove_subscriptions_for_destination', destination_id=destination_id)

    async def get_destination(self, destination_id: str) -> Optional[Destination]:
        return await self.db.execute('get_destination', destination_id=destination_id)

    async def register_destination(self, destination_id: str, webhook_url: str,
                                   name: Optional[str] = None, color: Optional[int] = None) -> bool:
        return await self.db.execute('register_destination', destination_id=destination_id,
                                     webhook_url=webhook_url, name=name, color=color)

    async def list_destinations(self) -> List[Destination]:
        return await self.db.execute('list_destinations')

    async def add_subscription(self, feed_url: str, destination_id: str, display_title: Optional[str] = None) -> bool:
        return await self.db.execute('add_subscription', feed_url=feed_url,
                                     destination_id=destination_id, display_title=display_title)

    async def remove_subscription(self, feed_url: str, destination_id: str) -> int:
        return await self.db.execute('remove_subscription', feed_url=feed_url, destination_id=destination_id)

    async def count_subscriptions(self) -> int:
        return await self.db.execute('count_subscriptions')

    async def sync_from_config(self, declared: Dict[str, List[Dict[str, Any]]]) -> None:
        """Upsert destinations and subscriptions declared in subscriptions.yaml."""
        for destination in declared.get('destinations', []):
            await self.register_destination(**destination)
        for subscription in declared.get('subscriptions', []):
            await self.add_subscription(**subscription)
