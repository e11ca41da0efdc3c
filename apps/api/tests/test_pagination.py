import asyncio

import pytest

from order_console.services.orders.chunk_cache import ChunkCache
from order_console.services.orders.chunk_client import ChunkStoreError
from order_console.services.orders.pagination import Prefetcher, has_more, resolve_page
from order_console.services.orders.types import Chunk


class FakeChunkStore:
    def __init__(self, *, failing: bool = False) -> None:
        self.failing = failing
        self.calls: list[int] = []

    async def fetch_chunk(self, index: int) -> Chunk:
        self.calls.append(index)
        await asyncio.sleep(0)
        if self.failing:
            raise ChunkStoreError("unavailable")
        return Chunk(index=index, orders=())

    async def fetch_chunk_keys(self) -> list[str] | None:
        return None


def test_resolve_page_maps_pages_to_chunks() -> None:
    assert resolve_page(1, 500, 140).chunk_index == 0
    assert resolve_page(140, 500, 140).chunk_index == 139
    assert resolve_page(1, 500, 140).corrected is False


@pytest.mark.parametrize(
    ("requested", "expected_page"),
    [(0, 1), (-3, 1), (141, 140), (1_000, 140)],
)
def test_resolve_page_clamps_out_of_range_pages(requested: int, expected_page: int) -> None:
    resolution = resolve_page(requested, 500, 140)

    assert resolution.page == expected_page
    assert resolution.chunk_index == expected_page - 1
    assert resolution.corrected is True


def test_resolve_page_with_no_chunks_stays_on_first_page() -> None:
    assert resolve_page(3, 500, 0).page == 1


def test_resolve_page_rejects_page_size_other_than_chunk_size() -> None:
    with pytest.raises(ValueError, match="chunk size"):
        resolve_page(1, 50, 140)


def test_has_more_is_false_only_on_last_chunk() -> None:
    assert has_more(0, 141) is True
    assert has_more(139, 141) is True
    assert has_more(140, 141) is False


@pytest.mark.asyncio
async def test_prefetch_warms_next_chunk_in_background() -> None:
    store = FakeChunkStore()
    cache = ChunkCache(store)
    prefetcher = Prefetcher(cache)

    task = prefetcher.schedule(1, 140)
    assert task is not None
    assert prefetcher.schedule(1, 140) is None

    await prefetcher.drain()

    assert store.calls == [1]
    assert cache.is_fresh(1)
    assert prefetcher.schedule(1, 140) is None
    assert prefetcher.pending == 0


@pytest.mark.asyncio
async def test_prefetch_ignores_chunks_outside_dataset() -> None:
    prefetcher = Prefetcher(ChunkCache(FakeChunkStore()))

    assert prefetcher.schedule(140, 140) is None
    assert prefetcher.schedule(-1, 140) is None


@pytest.mark.asyncio
async def test_prefetch_failure_is_swallowed() -> None:
    store = FakeChunkStore(failing=True)
    prefetcher = Prefetcher(ChunkCache(store, max_attempts=1))

    task = prefetcher.schedule(2, 140)
    assert task is not None
    await prefetcher.drain()

    assert task.done()
    assert task.exception() is None
    assert store.calls == [2]
