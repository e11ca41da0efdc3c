from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
import logging
import time

from sqlalchemy.engine import Engine

from order_console.config import Settings
from order_console.db import get_engine
from order_console.services.orders.chunk_cache import ChunkCache, TotalChunksCache
from order_console.services.orders.chunk_client import (
    ChunkFetchError,
    ChunkStore,
    ChunkStoreError,
    HttpChunkStore,
)
from order_console.services.orders.debounce import Debouncer
from order_console.services.orders.evaluator import apply_query
from order_console.services.orders.filters import FilterState, ResultSource, apply_column_filters
from order_console.services.orders.pagination import Prefetcher, has_more, resolve_page
from order_console.services.orders.persistence import SnapshotStore, SqlKeyValueStore
from order_console.services.orders.query_parser import parse_query
from order_console.services.orders.search import AdvancedFilters, OrderSearch
from order_console.services.orders.search_client import HttpSearchClient, SearchClient
from order_console.services.orders.types import (
    AllOrdersResult,
    Chunk,
    Order,
    PageResult,
    ParsedQuery,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_NOTICE = "Live order data could not be loaded; showing placeholder data."

PlaceholderFactory = Callable[[int], Iterable[Order]]


def _no_placeholder_orders(page: int) -> Iterable[Order]:
    return ()


@dataclass(frozen=True)
class FilterResult:
    source: ResultSource
    orders: tuple[Order, ...]


@dataclass(frozen=True)
class CacheStatus:
    total_chunks: int | None
    cached_chunks: tuple[int, ...]
    fresh_chunks: tuple[int, ...]
    persisted_chunks: tuple[int, ...]
    pending_prefetches: int
    chunk_ttl_seconds: float


@dataclass(frozen=True)
class WarmReport:
    total_chunks: int
    warmed_chunks: tuple[int, ...]
    failed_chunks: tuple[int, ...]


class OrderDataService:
    """Long-lived entry point to the chunked order dataset.

    One instance owns the chunk caches, the prefetcher and the search
    orchestrator; callers share it rather than building their own.
    """

    def __init__(
        self,
        store: ChunkStore,
        search_client: SearchClient,
        *,
        chunk_size: int = 500,
        chunk_ttl_seconds: float = 300.0,
        total_chunks_ttl_seconds: float = 600.0,
        default_total_chunks: int = 140,
        max_attempts: int = 3,
        retry_base_seconds: float = 1.0,
        hits_per_page: int = 500,
        filter_hits_per_page: int = 1000,
        debounce_seconds: float = 0.3,
        warm_batch_size: int = 10,
        warm_batch_delay_seconds: float = 0.1,
        snapshots: SnapshotStore | None = None,
        placeholder_factory: PlaceholderFactory = _no_placeholder_orders,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_close: Sequence[Callable[[], Awaitable[None]]] = (),
    ) -> None:
        self._chunk_size = chunk_size
        self._warm_batch_size = max(1, warm_batch_size)
        self._warm_batch_delay_seconds = warm_batch_delay_seconds
        self._snapshots = snapshots
        self._placeholder_factory = placeholder_factory
        self._sleep = sleep
        self._on_close = tuple(on_close)

        self._chunks = ChunkCache(
            store,
            ttl_seconds=chunk_ttl_seconds,
            max_attempts=max_attempts,
            retry_base_seconds=retry_base_seconds,
            snapshots=snapshots,
            clock=clock,
            sleep=sleep,
        )
        self._total_chunks = TotalChunksCache(
            store,
            ttl_seconds=total_chunks_ttl_seconds,
            default_total=default_total_chunks,
            snapshots=snapshots,
            clock=clock,
        )
        self._prefetcher = Prefetcher(self._chunks)
        self._search = OrderSearch(
            search_client,
            hits_per_page=hits_per_page,
            filter_hits_per_page=filter_hits_per_page,
        )
        self._debounced_search: Debouncer[list[Order]] = Debouncer(
            self.search_now, wait_seconds=debounce_seconds, sleep=sleep
        )

    @property
    def prefetcher(self) -> Prefetcher:
        return self._prefetcher

    def local_orders(self) -> list[Order]:
        return self._chunks.cached_orders()

    async def get_total_chunks(self) -> int:
        return await self._total_chunks.get()

    async def get_page(self, page_number: int, page_size: int | None = None) -> PageResult:
        total = await self.get_total_chunks()
        resolution = resolve_page(
            page_number,
            self._chunk_size if page_size is None else page_size,
            total,
            chunk_size=self._chunk_size,
        )
        if resolution.corrected:
            logger.info("Page %s is out of range; serving page %s", page_number, resolution.page)

        chunk = await self._chunks.get(resolution.chunk_index)
        more = has_more(resolution.chunk_index, total)
        if more:
            self._prefetcher.schedule(resolution.chunk_index + 1, total)

        return PageResult(
            orders=chunk.orders,
            total_chunks=total,
            current_chunk=resolution.chunk_index,
            has_more=more,
            page=resolution.page,
            corrected_from=page_number if resolution.corrected else None,
        )

    async def get_page_or_placeholder(
        self,
        page_number: int,
        page_size: int | None = None,
    ) -> PageResult:
        try:
            return await self.get_page(page_number, page_size)
        except ChunkFetchError as exc:
            logger.warning("Serving placeholder data for page %s: %s", page_number, exc)

        total = await self.get_total_chunks()
        resolution = resolve_page(
            page_number,
            self._chunk_size if page_size is None else page_size,
            total,
            chunk_size=self._chunk_size,
        )
        return PageResult(
            orders=tuple(self._placeholder_factory(resolution.page)),
            total_chunks=total,
            current_chunk=resolution.chunk_index,
            has_more=has_more(resolution.chunk_index, total),
            page=resolution.page,
            corrected_from=page_number if resolution.corrected else None,
            is_placeholder=True,
            notice=PLACEHOLDER_NOTICE,
        )

    async def _fetch_in_batches(self, indexes: Sequence[int]) -> tuple[list[Chunk], list[int]]:
        chunks: list[Chunk] = []
        failed: list[int] = []
        for start in range(0, len(indexes), self._warm_batch_size):
            batch = indexes[start : start + self._warm_batch_size]
            results = await asyncio.gather(
                *(self._chunks.get(index) for index in batch),
                return_exceptions=True,
            )
            for index, result in zip(batch, results):
                if isinstance(result, ChunkStoreError):
                    logger.warning("Skipping chunk %s: %s", index, result)
                    failed.append(index)
                elif isinstance(result, BaseException):
                    raise result
                else:
                    chunks.append(result)

            if start + self._warm_batch_size < len(indexes):
                await self._sleep(self._warm_batch_delay_seconds)

        return chunks, failed

    async def load_all_orders(self) -> AllOrdersResult:
        total = await self.get_total_chunks()
        chunks, failed = await self._fetch_in_batches(list(range(total)))

        unique: dict[str, Order] = {}
        for chunk in chunks:
            for order in chunk.orders:
                unique.setdefault(order.id, order)

        logger.info(
            "Loaded %s order(s) from %s chunk(s); %s failed",
            len(unique),
            total,
            len(failed),
        )
        return AllOrdersResult(
            orders=tuple(sorted(unique.values(), key=lambda order: order.created_at, reverse=True)),
            total_chunks=total,
            failed_chunks=tuple(failed),
        )

    async def search(self, query: str) -> list[Order] | None:
        """Debounced search; returns None when a newer call superseded this one."""
        return await self._debounced_search(query)

    async def search_now(self, query: str) -> list[Order]:
        return await self._search.search(query, self.local_orders())

    async def search_with_filters(self, filters: AdvancedFilters) -> list[Order]:
        return await self._search.search_with_filters(filters, self.local_orders())

    @staticmethod
    def parse_query(text: str) -> ParsedQuery:
        return parse_query(text)

    @staticmethod
    def apply_query(orders: Iterable[Order], parsed: ParsedQuery) -> list[Order]:
        return apply_query(orders, parsed)

    async def filter_orders(self, state: FilterState, chunk_orders: Sequence[Order]) -> FilterResult:
        source = state.source
        if source is ResultSource.STRUCTURED_FILTER:
            base: Sequence[Order] = await self.search_with_filters(state.advanced)
        elif source is ResultSource.REMOTE_SEARCH:
            base = await self.search_now(state.search_query)
        elif source is ResultSource.LOCAL_QUERY:
            base = apply_query(chunk_orders, parse_query(state.query_text))
        else:
            base = chunk_orders

        return FilterResult(
            source=source,
            orders=tuple(apply_column_filters(base, state.column_filters)),
        )

    def cache_status(self) -> CacheStatus:
        cached = self._chunks.cached_indexes()
        persisted = self._snapshots.persisted_chunk_indexes() if self._snapshots is not None else []
        return CacheStatus(
            total_chunks=self._total_chunks.cached_value,
            cached_chunks=tuple(cached),
            fresh_chunks=tuple(index for index in cached if self._chunks.is_fresh(index)),
            persisted_chunks=tuple(persisted),
            pending_prefetches=self._prefetcher.pending,
            chunk_ttl_seconds=self._chunks.ttl_seconds,
        )

    async def warm(self, chunk_indexes: Sequence[int] | None = None) -> WarmReport:
        total = await self.get_total_chunks()
        if chunk_indexes is None:
            indexes = list(range(total))
        else:
            indexes = sorted({index for index in chunk_indexes if 0 <= index < total})

        chunks, failed = await self._fetch_in_batches(indexes)
        return WarmReport(
            total_chunks=total,
            warmed_chunks=tuple(chunk.index for chunk in chunks),
            failed_chunks=tuple(failed),
        )

    def reset(self) -> None:
        self._prefetcher.cancel()
        self._debounced_search.cancel()
        self._chunks.clear()
        self._total_chunks.clear()

    async def clear_cache(self) -> None:
        self.reset()
        if self._snapshots is not None:
            await asyncio.to_thread(self._snapshots.clear)
        logger.info("Order caches cleared")

    async def aclose(self) -> None:
        self.reset()
        for close in self._on_close:
            await close()


def build_order_service(settings: Settings, *, engine: Engine | None = None) -> OrderDataService:
    store = HttpChunkStore(
        base_url=settings.backend_url,
        project=settings.cache_project,
        table=settings.orders_table,
        timeout_seconds=settings.chunk_timeout_seconds,
        metadata_timeout_seconds=settings.metadata_timeout_seconds,
    )
    search_client = HttpSearchClient(
        base_url=settings.backend_url,
        project=settings.search_project,
        table=settings.orders_table,
        timeout_seconds=settings.search_timeout_seconds,
    )

    snapshots = None
    if settings.persist_snapshots:
        snapshots = SnapshotStore(SqlKeyValueStore(engine or get_engine()), clock=time.time)

    return OrderDataService(
        store,
        search_client,
        chunk_size=settings.chunk_size,
        chunk_ttl_seconds=settings.chunk_ttl_seconds,
        total_chunks_ttl_seconds=settings.total_chunks_ttl_seconds,
        default_total_chunks=settings.default_total_chunks,
        max_attempts=settings.chunk_max_attempts,
        retry_base_seconds=settings.retry_base_seconds,
        hits_per_page=settings.search_hits_per_page,
        filter_hits_per_page=settings.filter_hits_per_page,
        debounce_seconds=settings.search_debounce_seconds,
        warm_batch_size=settings.warm_batch_size,
        warm_batch_delay_seconds=settings.warm_batch_delay_seconds,
        snapshots=snapshots,
        on_close=(store.aclose, search_client.aclose),
    )
