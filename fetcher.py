#!/usr/bin/env python3
"""
Feed retrieval and classification.

This module issues the single HTTP GET each feed URL gets per poll cycle,
over one shared aiohttp session, with a hard cap on the response body so a
misbehaving origin cannot exhaust memory. It also decides which normalizer
pipeline applies to a URL.
"""

from asyncio import TimeoutError
from enum import Enum
from typing import List, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import FetchError
from telemetry import get_tracer, trace_span

# Module-specific logger
logger = get_logger("fetcher")
_tracer = get_tracer("fetcher")

# HTTP status codes
HTTP_OK = 200

READ_CHUNK_SIZE = 64 * 1024


class PipelineKind(Enum):
    """Normalizer pipelines, selected once per feed URL."""

    GENERIC_SYNDICATION = "generic_syndication"
    VENDOR_JSON = "vendor_json"


# URL prefixes routed to vendor pipelines; everything else is RSS/Atom
VENDOR_PREFIXES = (
    ("https://danbooru.donmai.us/posts.json", PipelineKind.VENDOR_JSON),
)


def classify_feed(url: str) -> PipelineKind:
    """Pick the normalizer pipeline for a feed URL."""
    for prefix, kind in VENDOR_PREFIXES:
        if url.startswith(prefix):
            return kind
    return PipelineKind.GENERIC_SYNDICATION


class FeedFetcher:
    """Fetches raw feed bodies over a session shared for the whole cycle."""

    def __init__(self, max_bytes: Optional[int] = None, session: Optional[ClientSession] = None) -> None:
        self.max_bytes = max_bytes or config.MAX_RESPONSE_BYTES
        self.session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        """Create the HTTP session if one was not supplied."""
        if self.session is None:
            self.session = ClientSession(
                timeout=ClientTimeout(total=config.HTTP_TIMEOUT),
                headers={'User-Agent': config.USER_AGENT},
            )
            self._owns_session = True
        logger.debug("FeedFetcher initialized")

    async def close(self) -> None:
        """Close the HTTP session if this fetcher created it."""
        if self.session is not None and self._owns_session:
            await self.session.close()
        self.session = None

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, url: {"feed.url": url},
    )
    async def fetch(self, url: str) -> bytes:
        """Retrieve the raw body of a feed URL.

        Raises:
            FetchError: on network errors, timeouts, non-200 statuses or when the
                body exceeds the configured size cap.
        """
        if self.session is None:
            await self.initialize()
        try:
            async with self.session.get(url, max_redirects=config.MAX_REDIRECTS) as response:
                if response.status != HTTP_OK:
                    raise FetchError(url, f"HTTP {response.status}")

                declared = response.content_length
                if declared is not None and declared > self.max_bytes:
                    raise FetchError(url, f"declared body of {declared} bytes exceeds limit of {self.max_bytes}")

                chunks: List[bytes] = []
                received = 0
                async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise FetchError(url, f"body exceeds limit of {self.max_bytes} bytes")
                    chunks.append(chunk)
                logger.debug(f"Fetched {received} bytes from {url}")
                return b"".join(chunks)
        except TimeoutError as e:
            raise FetchError(url, f"timed out after {config.HTTP_TIMEOUT}s") from e
        except ClientError as e:
            raise FetchError(url, self._format_client_error(e)) from e

    def _format_client_error(self, error: ClientError) -> str:
        """Describe aiohttp client errors with any available status/errno."""
        parts: List[str] = [error.__class__.__name__]
        status = getattr(error, 'status', None)
        if status is not None:
            parts.append(f"status={status}")
        os_error = getattr(error, 'os_error', None)
        if os_error is not None:
            errno = getattr(os_error, 'errno', None)
            strerror = getattr(os_error, 'strerror', None)
            if errno is not None:
                parts.append(f"errno={errno}")
            if strerror:
                parts.append(str(strerror))
        message = str(error)
        if message:
            parts.append(message)
        return " ".join(parts)
