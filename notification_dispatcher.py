"""
Notification Dispatcher - enrich, deliver once, retire the watch
"""

import logging
import time
from typing import Callable

from errors import DeliveryError, EnrichmentError
from log_event_extractor import TokenEvent
from message_formatter import format_token_message
from subscription_registry import Subscription, SubscriptionRegistry
from token_enricher import TokenInfo

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """At-most-once delivery: the watch is retired whether or not delivery worked"""

    def __init__(self, registry: SubscriptionRegistry, enricher, notifier,
                 clock: Callable[[], float] = time.time):
        self.registry = registry
        self.enricher = enricher
        self.notifier = notifier
        self._clock = clock

        self.stats = {
            'delivered': 0,
            'failed': 0,
            'skipped_inactive': 0,
            'degraded': 0,
        }

    async def _enrich(self, mint: str) -> TokenInfo:
        try:
            return await self.enricher.enrich(mint)
        except Exception as e:
            self.stats['degraded'] += 1
            error = EnrichmentError(f"enrichment failed for {mint}: {e}")
            logger.warning(f"⚠️ {error} - sending with defaults")
            return TokenInfo(mint=mint)

    async def dispatch(self, event: TokenEvent, subscription: Subscription) -> bool:
        """Returns True if the subscriber was sent the alert"""
        token_info = await self._enrich(event.mint_address)
        age_seconds = max(0, int(self._clock() - event.observed_at))

        # Enrichment is a suspension point: the watch may have been stopped meanwhile
        if not await self.registry.is_active(subscription):
            self.stats['skipped_inactive'] += 1
            logger.info(f"Watch for {subscription.subscriber_id} no longer active, "
                        f"not sending {event.mint_address[:8]}...")
            return False

        delivered = False
        try:
            await self.notifier.send_message(
                subscription.subscriber_id,
                format_token_message(token_info, age_seconds)
            )
            delivered = True
            self.stats['delivered'] += 1
            logger.info(f"📨 Sent new token {event.mint_address} to {subscription.subscriber_id} "
                        f"(age {age_seconds}s)")
        except DeliveryError as e:
            self.stats['failed'] += 1
            logger.error(f"❌ Delivery to {subscription.subscriber_id} failed for "
                         f"{event.mint_address}: {e}")
        finally:
            await self.registry.retire(subscription)

        return delivered
