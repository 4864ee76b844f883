"""
Extraction cache and in-flight deduplication for the Intent Layer.

ExtractionCache: TTL-bounded, capacity-bounded map from normalized query text
to ExtractionResult; expired entries are purged on read and before eviction,
and the oldest live entry is evicted once over capacity.

InFlightRegistry: one running task per key. Concurrent callers await the same
task through asyncio.shield, so a caller that gives up never cancels work the
others (and the cache) are waiting on.
"""

import asyncio
import logging
import os
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable

from shared.models import ExtractionResult

logger = logging.getLogger(__name__)


class ExtractionCache:
    """Bounded cache of extraction results keyed by normalized text."""

    def __init__(
        self,
        ttl_seconds: float | None = None,
        capacity: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds is None:
            ttl_seconds = float(os.getenv("INTENT_CACHE_TTL_SECONDS", "300"))
        if capacity is None:
            capacity = int(os.getenv("INTENT_CACHE_CAPACITY", "100"))
        self.ttl_seconds = ttl_seconds
        self.capacity = max(1, capacity)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, ExtractionResult]] = OrderedDict()

    def get(self, key: str) -> ExtractionResult | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            logger.debug("Cache entry expired: %s", key)
            return None
        return value

    def set(self, key: str, value: ExtractionResult) -> None:
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = (self._clock(), value)
        if len(self._entries) > self.capacity:
            self.purge_expired()
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache full, evicted: %s", evicted)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, (stored_at, _) in self._entries.items() if now - stored_at > self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class InFlightRegistry:
    """Share one pending task among concurrent callers with the same key."""

    def __init__(self):
        self._tasks: dict[str, asyncio.Future] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        # Lookup and insert happen before the first await, so they are atomic on the loop.
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda done, k=key: self._release(k, done))
        else:
            logger.debug("Joining in-flight extraction: %s", key)
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Future) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if not task.cancelled():
            # Mark the exception retrieved when every waiter has already left.
            task.exception()

    def __contains__(self, key: str) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)
