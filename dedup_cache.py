"""
Dedup Cache - suppress repeat sightings of the same mint
Entries expire after a fixed window; an expired entry reads as absent
"""

import asyncio
import logging
import time
from typing import Callable, Dict

from config import TOKEN_CACHE_TTL_SECONDS, CACHE_SWEEP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class DedupCache:
    """Process-wide set of recently surfaced mints, shared by every connection"""

    def __init__(self, ttl_seconds: float = TOKEN_CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, float] = {}  # mint -> expires_at
        self._lock = asyncio.Lock()
        self.running = False

        self.stats = {
            'hits': 0,
            'passes': 0,
            'evicted': 0,
        }

    async def seen_before(self, mint: str) -> bool:
        """
        Check-and-record in one step.

        Returns False exactly once per window for a given mint; that caller
        owns the dispatch. The window restarts from now on every False.
        """
        async with self._lock:
            now = self._clock()
            expires_at = self._entries.get(mint)
            if expires_at is not None and expires_at > now:
                self.stats['hits'] += 1
                logger.debug(f"♻️ Skipping cached mint {mint[:8]}...")
                return True

            self._entries[mint] = now + self.ttl
            self.stats['passes'] += 1
            return False

    async def sweep(self) -> int:
        """Drop expired entries, returns how many were removed"""
        async with self._lock:
            now = self._clock()
            expired = [mint for mint, expires_at in self._entries.items() if expires_at <= now]
            for mint in expired:
                del self._entries[mint]
            self.stats['evicted'] += len(expired)

        if expired:
            logger.debug(f"🗑️ Evicted {len(expired)} expired mints from dedup cache")
        return len(expired)

    async def run_sweeper(self, interval: float = CACHE_SWEEP_INTERVAL_SECONDS):
        """Background eviction loop"""
        self.running = True
        try:
            while self.running:
                await asyncio.sleep(interval)
                await self.sweep()
        finally:
            self.running = False

    def stop(self):
        self.running = False

    def __len__(self):
        return len(self._entries)

    def get_stats(self) -> dict:
        return {
            'entries': len(self._entries),
            'ttl_seconds': self.ttl,
            **self.stats,
        }
