#!/usr/bin/env python3
"""
Webhook transport for notification payloads.

Destinations are chat webhooks that accept rich-embed messages. One message
carries every payload for a subscriber in a cycle. A webhook that answers
404/401/403 has been deleted or revoked, which is reported as
DestinationUnreachable so its subscriptions get pruned; anything else is a
transient DeliveryError and is not retried.
"""

from asyncio import TimeoutError
from typing import Optional, Sequence

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import DeliveryError, DestinationUnreachable
from models import Destination, SubscriptionStore
from notifications import NotificationPayload
from telemetry import trace_span

logger = get_logger("delivery")

GONE_STATUSES = frozenset({401, 403, 404})


class WebhookDeliverer:
    """Resolves destinations from the store and posts payloads to their webhooks."""

    def __init__(self, store: SubscriptionStore, session: Optional[ClientSession] = None) -> None:
        self.store = store
        self.session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        if self.session is None:
            self.session = ClientSession(
                timeout=ClientTimeout(total=config.DELIVERY_TIMEOUT),
                headers={'User-Agent': config.USER_AGENT},
            )
            self._owns_session = True

    async def close(self) -> None:
        if self.session is not None and self._owns_session:
            await self.session.close()
        self.session = None

    async def resolve_destination(self, destination_id: str) -> Optional[Destination]:
        """Return the destination, or None when it no longer exists."""
        return await self.store.get_destination(destination_id)

    @trace_span(
        "deliver",
        tracer_name="delivery",
        attr_from_args=lambda self, destination, payloads: {
            "destination.id": destination.destination_id,
            "delivery.count": len(payloads),
        },
    )
    async def deliver(self, destination: Destination, payloads: Sequence[NotificationPayload]) -> None:
        """Post payloads to a destination as a single message.

        Raises:
            DestinationUnreachable: the webhook no longer exists.
            DeliveryError: any other failure.
        """
        if not payloads:
            return
        if self.session is None:
            await self.initialize()

        body = {"embeds": [payload.to_embed() for payload in payloads]}
        try:
            async with self.session.post(destination.webhook_url, json=body) as response:
                if response.status in GONE_STATUSES:
                    raise DestinationUnreachable(destination.destination_id, f"HTTP {response.status}")
                if response.status >= 300:
                    detail = (await response.text())[:200]
                    raise DeliveryError(destination.destination_id, f"HTTP {response.status} {detail}".strip())
        except TimeoutError as e:
            raise DeliveryError(destination.destination_id, "timed out") from e
        except ClientError as e:
            raise DeliveryError(destination.destination_id, f"{e.__class__.__name__}: {e}") from e

        logger.debug(f"Delivered {len(payloads)} notifications to {destination.destination_id}")
