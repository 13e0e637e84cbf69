"""
Subscription Registry - who is watching, and each watch's monitoring task
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from config import PUMP_FUN_PROGRAM_ID

logger = logging.getLogger(__name__)


class SubscriptionState(Enum):
    ACTIVE = 'active'
    RETIRED = 'retired'


@dataclass(eq=False)
class Subscription:
    subscriber_id: int
    program_id: str = field(default_factory=lambda: str(PUMP_FUN_PROGRAM_ID))
    state: SubscriptionState = SubscriptionState.ACTIVE
    created_at: float = field(default_factory=time.time)

    @property
    def is_active(self) -> bool:
        return self.state is SubscriptionState.ACTIVE


class SubscriptionRegistry:
    """
    Single source of truth for watch state.

    Every mutation happens under one lock; stopping connections and joining
    their tasks happens after the lock is released so a slow close never
    blocks other subscribers.
    """

    def __init__(self, session_factory: Optional[Callable] = None):
        # session_factory(subscription) -> StreamConnection
        self.session_factory = session_factory
        self._subscriptions: Dict[int, Subscription] = {}
        self._sessions: Dict[int, Tuple[object, asyncio.Task]] = {}
        self._lock = asyncio.Lock()

    async def start_watch(self, subscriber_id: int) -> Subscription:
        """Replace any existing watch with a fresh active one and start its connection"""
        async with self._lock:
            previous = self._subscriptions.get(subscriber_id)
            if previous is not None and previous.is_active:
                previous.state = SubscriptionState.RETIRED
                logger.info(f"♻️ Replacing active watch for {subscriber_id}")
            old_session = self._sessions.pop(subscriber_id, None)

            subscription = Subscription(subscriber_id=subscriber_id)
            self._subscriptions[subscriber_id] = subscription

            if self.session_factory is not None:
                connection = self.session_factory(subscription)
                task = asyncio.create_task(connection.run(), name=f"watch-{subscriber_id}")
                task.add_done_callback(self._on_task_done)
                self._sessions[subscriber_id] = (connection, task)

        if old_session is not None:
            await self._stop_session(old_session)

        logger.info(f"✅ Watch started for {subscriber_id}")
        return subscription

    async def stop_watch(self, subscriber_id: int) -> bool:
        """Retire the subscriber's watch; returns False if nothing was active"""
        async with self._lock:
            subscription = self._subscriptions.get(subscriber_id)
            was_active = subscription is not None and subscription.is_active
            if was_active:
                subscription.state = SubscriptionState.RETIRED
            session = self._sessions.pop(subscriber_id, None)

        if session is not None:
            await self._stop_session(session)

        if was_active:
            logger.info(f"🛑 Watch stopped for {subscriber_id}")
        return was_active

    async def retire(self, subscription: Subscription) -> bool:
        """Active -> Retired for this exact subscription; stops its connection"""
        async with self._lock:
            if not subscription.is_active:
                return False
            subscription.state = SubscriptionState.RETIRED
            session = None
            if self._subscriptions.get(subscription.subscriber_id) is subscription:
                session = self._sessions.pop(subscription.subscriber_id, None)

        if session is not None:
            await self._stop_session(session)
        logger.info(f"Watch retired for {subscription.subscriber_id}")
        return True

    async def is_active(self, subscription: Subscription) -> bool:
        async with self._lock:
            return subscription.is_active

    async def status(self, subscriber_id: int) -> Optional[SubscriptionState]:
        """State of the subscriber's latest watch, None if they never watched"""
        async with self._lock:
            subscription = self._subscriptions.get(subscriber_id)
            return subscription.state if subscription else None

    async def count_active(self) -> int:
        async with self._lock:
            return sum(1 for s in self._subscriptions.values() if s.is_active)

    async def shutdown(self):
        """Retire everything and wait for every connection to close"""
        async with self._lock:
            for subscription in self._subscriptions.values():
                subscription.state = SubscriptionState.RETIRED
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for session in sessions:
            await self._stop_session(session)
        logger.info(f"Registry shut down ({len(sessions)} connections closed)")

    def get_connection(self, subscriber_id: int):
        session = self._sessions.get(subscriber_id)
        return session[0] if session else None

    async def _stop_session(self, session):
        connection, task = session
        await connection.stop()

        # Retirement from inside the monitoring task itself: the stop flag ends its loop
        if task is asyncio.current_task():
            return

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    @staticmethod
    def _on_task_done(task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Monitoring task {task.get_name()} crashed: {error!r}")
