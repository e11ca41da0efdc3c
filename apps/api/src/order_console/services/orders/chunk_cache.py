from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable
import logging
import time
from typing import Generic, TypeVar

from order_console.services.orders.chunk_client import ChunkFetchError, ChunkStore, ChunkStoreError
from order_console.services.orders.persistence import SnapshotStore
from order_console.services.orders.types import CacheEntry, Chunk, Order

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

TOTAL_CHUNKS_KEY = "total_chunks"


class InFlightRegistry(Generic[K, V]):
    """At most one pending operation per key; every caller awaits the same task."""

    def __init__(self) -> None:
        self._pending: dict[K, asyncio.Task[V]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    async def run(self, key: K, factory: Callable[[], Awaitable[V]]) -> V:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda done, key=key: self._release(key, done))
        # A cancelled waiter must not cancel the shared operation.
        return await asyncio.shield(task)

    def _release(self, key: K, task: asyncio.Task[V]) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled():
            # Mark the outcome as retrieved when every waiter went away.
            task.exception()

    def clear(self) -> None:
        self._pending.clear()


class ChunkCache:
    def __init__(
        self,
        store: ChunkStore,
        *,
        ttl_seconds: float = 300.0,
        max_attempts: int = 3,
        retry_base_seconds: float = 1.0,
        snapshots: SnapshotStore | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._max_attempts = max_attempts
        self._retry_base_seconds = retry_base_seconds
        self._snapshots = snapshots
        self._clock = clock
        self._sleep = sleep
        self._entries: dict[int, CacheEntry[Chunk]] = {}
        self._inflight: InFlightRegistry[int, Chunk] = InFlightRegistry()
        # Bumped by clear(); fetches started under an older generation are not stored.
        self._generation = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def is_fresh(self, index: int) -> bool:
        entry = self._entries.get(index)
        return entry is not None and entry.is_fresh(self._clock(), self._ttl_seconds)

    def is_fetching(self, index: int) -> bool:
        return index in self._inflight

    async def get(self, index: int) -> Chunk:
        if index < 0:
            raise ValueError("chunk index must be >= 0")

        entry = self._entries.get(index)
        if entry is None and self._snapshots is not None:
            generation = self._generation
            entry = await asyncio.to_thread(self._snapshots.load_chunk, index)
            if entry is not None and generation == self._generation:
                self._entries[index] = entry

        if entry is not None and entry.is_fresh(self._clock(), self._ttl_seconds):
            return entry.value

        try:
            return await self._inflight.run(index, lambda: self._refresh(index))
        except ChunkFetchError:
            if entry is None:
                raise
            logger.warning("Serving stale chunk %s after a failed refresh", index)
            return entry.value

    async def _refresh(self, index: int) -> Chunk:
        generation = self._generation
        chunk = await self._fetch_with_retry(index)
        if generation != self._generation:
            logger.debug("Discarding chunk %s fetched before the cache was cleared", index)
            return chunk

        entry = CacheEntry(value=chunk, fetched_at=self._clock())
        self._entries[index] = entry
        if self._snapshots is not None:
            await asyncio.to_thread(self._snapshots.save_chunk, entry, ttl_seconds=self._ttl_seconds)
            if generation != self._generation:
                await asyncio.to_thread(self._snapshots.discard_chunk, index)
        return chunk

    async def _fetch_with_retry(self, index: int) -> Chunk:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._store.fetch_chunk(index)
            except ChunkStoreError as exc:
                if attempt == self._max_attempts:
                    logger.error("Chunk %s failed after %s attempt(s): %s", index, attempt, exc)
                    raise ChunkFetchError(index, attempt, str(exc)) from exc

                delay = attempt * self._retry_base_seconds
                logger.warning(
                    "Chunk %s fetch failed attempt=%s error=%s; retrying in %.1fs",
                    index,
                    attempt,
                    exc,
                    delay,
                )
                await self._sleep(delay)

        raise AssertionError("unreachable")

    def cached_indexes(self) -> list[int]:
        return sorted(self._entries)

    def cached_orders(self) -> list[Order]:
        return [order for index in sorted(self._entries) for order in self._entries[index].value.orders]

    def clear(self) -> None:
        self._generation += 1
        self._entries.clear()
        self._inflight.clear()


class TotalChunksCache:
    def __init__(
        self,
        store: ChunkStore,
        *,
        ttl_seconds: float = 600.0,
        default_total: int = 140,
        snapshots: SnapshotStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._default_total = default_total
        self._snapshots = snapshots
        self._clock = clock
        self._entry: CacheEntry[int] | None = None
        self._inflight: InFlightRegistry[str, int] = InFlightRegistry()
        self._generation = 0

    @property
    def cached_value(self) -> int | None:
        return self._entry.value if self._entry is not None else None

    async def get(self) -> int:
        if self._entry is None and self._snapshots is not None:
            generation = self._generation
            loaded = await asyncio.to_thread(self._snapshots.load_total_chunks)
            if generation == self._generation:
                self._entry = loaded

        if self._entry is not None and self._entry.is_fresh(self._clock(), self._ttl_seconds):
            return self._entry.value

        return await self._inflight.run(TOTAL_CHUNKS_KEY, self._refresh)

    async def _refresh(self) -> int:
        generation = self._generation
        try:
            keys = await self._store.fetch_chunk_keys()
        except ChunkStoreError as exc:
            logger.warning("Chunk count lookup failed: %s", exc)
            keys = None

        if keys is None:
            total = self._entry.value if self._entry is not None else self._default_total
            logger.warning("Using fallback chunk count %s", total)
        else:
            total = len(keys)

        if generation != self._generation:
            return total

        # The fallback is cached like a real answer so a failing endpoint is not hammered.
        entry = CacheEntry(value=total, fetched_at=self._clock())
        self._entry = entry
        if self._snapshots is not None and keys is not None:
            await asyncio.to_thread(self._snapshots.save_total_chunks, entry, ttl_seconds=self._ttl_seconds)
            if generation != self._generation:
                await asyncio.to_thread(self._snapshots.discard_total_chunks)
        return total

    def clear(self) -> None:
        self._generation += 1
        self._entry = None
        self._inflight.clear()
