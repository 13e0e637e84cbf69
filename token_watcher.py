"""
Token Watcher - wires the pipeline together
registry -> connection per watch -> extractor -> dedup -> dispatcher
"""

import asyncio
import logging
from functools import partial
from typing import Callable, Optional

from config import RPC_WS_URL
from dedup_cache import DedupCache
from log_event_extractor import TokenEvent
from notification_dispatcher import NotificationDispatcher
from stream_connection import StreamConnection
from subscription_registry import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)


class TokenWatcher:
    """Owns the shared stores for the life of the process"""

    def __init__(self, notifier, enricher, dedup: Optional[DedupCache] = None,
                 ws_url: str = RPC_WS_URL, connection_factory: Optional[Callable] = None):
        self.dedup = dedup or DedupCache()
        self.registry = SubscriptionRegistry(session_factory=self._create_connection)
        self.dispatcher = NotificationDispatcher(self.registry, enricher, notifier)
        self.ws_url = ws_url
        # connection_factory(on_event, program_id, name) -> StreamConnection
        self.connection_factory = connection_factory or self._default_connection
        self.sweeper_task: Optional[asyncio.Task] = None

    def _default_connection(self, on_event, program_id, name):
        return StreamConnection(on_event, program_id=program_id, ws_url=self.ws_url, name=name)

    def _create_connection(self, subscription: Subscription):
        return self.connection_factory(
            partial(self.handle_event, subscription),
            subscription.program_id,
            f"watch-{subscription.subscriber_id}",
        )

    async def handle_event(self, subscription: Subscription, event: TokenEvent):
        """Per-connection event path, called in frame order"""
        if not await self.registry.is_active(subscription):
            return

        if await self.dedup.seen_before(event.mint_address):
            logger.debug(f"Duplicate mint {event.mint_address[:8]}... ignored for {subscription.subscriber_id}")
            return

        await self.dispatcher.dispatch(event, subscription)

    async def start_watch(self, subscriber_id: int) -> Subscription:
        return await self.registry.start_watch(subscriber_id)

    async def stop_watch(self, subscriber_id: int) -> bool:
        return await self.registry.stop_watch(subscriber_id)

    def start(self):
        if self.sweeper_task is None or self.sweeper_task.done():
            self.sweeper_task = asyncio.create_task(self.dedup.run_sweeper(), name="dedup-sweeper")
        logger.info("✅ Token watcher started")

    async def shutdown(self):
        logger.info("Starting shutdown...")
        await self.registry.shutdown()
        self.dedup.stop()
        if self.sweeper_task and not self.sweeper_task.done():
            self.sweeper_task.cancel()
            await asyncio.gather(self.sweeper_task, return_exceptions=True)
        logger.info("✅ Shutdown complete")

    async def get_stats(self) -> dict:
        return {
            'active_watches': await self.registry.count_active(),
            'dedup': self.dedup.get_stats(),
            'dispatcher': dict(self.dispatcher.stats),
        }
