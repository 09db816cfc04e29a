#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Optional


class FeedNotifierError(Exception):
    """Base class for every error raised by the polling pipeline."""


class FetchError(FeedNotifierError):
    """Raised when a feed URL cannot be retrieved (network, status, oversize).

    Attributes:
        url: The feed URL that failed.
        reason: Short human-readable cause.
    """

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class ParseError(FeedNotifierError):
    """Raised when fetched content is not a feed we know how to read."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to parse {url}: {reason}")
        self.url = url
        self.reason = reason


class DestinationUnreachable(FeedNotifierError):
    """Raised when a destination no longer exists and its subscriptions should be pruned."""

    def __init__(self, destination_id: str, reason: Optional[str] = None):
        message = f"Destination {destination_id} is unreachable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.destination_id = destination_id
        self.reason = reason


class DeliveryError(FeedNotifierError):
    """Raised when a delivery attempt fails for a transient reason."""

    def __init__(self, destination_id: str, reason: str):
        super().__init__(f"Delivery to {destination_id} failed: {reason}")
        self.destination_id = destination_id
        self.reason = reason

__all__ = [
    "FeedNotifierError",
    "FetchError",
    "ParseError",
    "DestinationUnreachable",
    "DeliveryError",
]
