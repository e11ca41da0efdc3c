from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging

from order_console.services.orders.chunk_cache import ChunkCache
from order_console.services.orders.chunk_client import ChunkStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageResolution:
    page: int
    chunk_index: int
    corrected: bool


def resolve_page(
    page_number: int,
    page_size: int,
    total_chunks: int,
    *,
    chunk_size: int = 500,
) -> PageResolution:
    """Map a 1-based page onto its chunk, clamping out-of-range pages.

    A clamped resolution is not an error: ``corrected`` tells the caller to
    adopt ``page`` as its current page.
    """
    if page_size != chunk_size:
        raise ValueError(f"page_size must equal the chunk size ({chunk_size}), got {page_size}")

    last_page = max(total_chunks, 1)
    page = min(max(page_number, 1), last_page)
    return PageResolution(page=page, chunk_index=page - 1, corrected=page != page_number)


def has_more(chunk_index: int, total_chunks: int) -> bool:
    return chunk_index < total_chunks - 1


class Prefetcher:
    def __init__(self, cache: ChunkCache) -> None:
        self._cache = cache
        self._tasks: dict[int, asyncio.Task[None]] = {}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, chunk_index: int, total_chunks: int) -> asyncio.Task[None] | None:
        if not 0 <= chunk_index < total_chunks or chunk_index in self._tasks:
            return None
        if self._cache.is_fresh(chunk_index) or self._cache.is_fetching(chunk_index):
            return None

        task = asyncio.create_task(self._warm(chunk_index))
        self._tasks[chunk_index] = task
        task.add_done_callback(lambda done: self._forget(chunk_index, done))
        return task

    def _forget(self, chunk_index: int, task: asyncio.Task[None]) -> None:
        if self._tasks.get(chunk_index) is task:
            del self._tasks[chunk_index]

    async def _warm(self, chunk_index: int) -> None:
        try:
            await self._cache.get(chunk_index)
        except ChunkStoreError as exc:
            logger.debug("Prefetch of chunk %s failed: %s", chunk_index, exc)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
