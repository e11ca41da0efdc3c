import asyncio
from pathlib import Path
import json
import threading

import pytest
from sqlalchemy.orm import Session

from order_console.db import create_schema, get_engine
from order_console.models import CacheEntryRecord
from order_console.services.orders.chunk_cache import ChunkCache, TotalChunksCache
from order_console.services.orders.chunk_client import ChunkStoreError
from order_console.services.orders.normalize import order_from_raw
from order_console.services.orders.persistence import (
    CHUNK_KEY_PREFIX,
    TOTAL_CHUNKS_KEY,
    SnapshotStore,
    SqlKeyValueStore,
)
from order_console.services.orders.types import CacheEntry, Chunk


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self.values if key.startswith(prefix))


class BrokenKeyValueStore:
    def get(self, key: str) -> str | None:
        raise OSError("storage unavailable")

    def set(self, key: str, value: str) -> None:
        raise OSError("storage unavailable")

    def delete(self, key: str) -> None:
        raise OSError("storage unavailable")

    def keys(self, prefix: str = "") -> list[str]:
        raise OSError("storage unavailable")


class CountingChunkStore:
    def __init__(self, *, keys: list[str] | None = None) -> None:
        self.keys = keys
        self.calls: list[int] = []
        self.key_calls = 0

    async def fetch_chunk(self, index: int) -> Chunk:
        self.calls.append(index)
        return _chunk(index)

    async def fetch_chunk_keys(self) -> list[str] | None:
        self.key_calls += 1
        if self.keys is None:
            raise ChunkStoreError("metadata unavailable")
        return self.keys


def _chunk(index: int) -> Chunk:
    order = order_from_raw(
        {"id": f"{index}-0", "order_number": f"#INK{index}", "created_at": "2024-06-11T10:00:00Z"},
        fallback_id="unused",
    )
    return Chunk(index=index, orders=(order,))


def test_sql_key_value_store_roundtrip(sqlite_env: Path) -> None:
    create_schema()
    store = SqlKeyValueStore(get_engine())

    store.set("orders:chunk:1", "first")
    store.set("orders:chunk:1", "second")
    store.set("orders:chunk:2", "other")
    store.set("orders_chunk_3", "not a chunk key")

    assert store.get("orders:chunk:1") == "second"
    assert store.get("missing") is None
    assert store.keys("orders:chunk:") == ["orders:chunk:1", "orders:chunk:2"]

    store.delete("orders:chunk:1")

    assert store.get("orders:chunk:1") is None
    with Session(get_engine()) as session:
        assert session.get(CacheEntryRecord, "orders:chunk:2") is not None


def test_snapshot_store_returns_fresh_chunk_and_expires_it() -> None:
    now = [1_000.0]
    snapshots = SnapshotStore(InMemoryKeyValueStore(), clock=lambda: now[0])
    chunk = _chunk(5)

    snapshots.save_chunk(CacheEntry(value=chunk, fetched_at=1_000.0), ttl_seconds=300)
    loaded = snapshots.load_chunk(5)

    assert loaded is not None
    assert loaded.value == chunk
    assert loaded.fetched_at == 1_000.0
    assert snapshots.persisted_chunk_indexes() == [5]

    now[0] = 1_300.0
    assert snapshots.load_chunk(5) is None


def test_snapshot_store_discards_corrupt_envelopes() -> None:
    kv = InMemoryKeyValueStore()
    kv.set(f"{CHUNK_KEY_PREFIX}0", "{not json")
    kv.set(TOTAL_CHUNKS_KEY, json.dumps({"saved_at": 1_000.0, "ttl_seconds": 600, "value": "many"}))
    snapshots = SnapshotStore(kv, clock=lambda: 1_000.0)

    assert snapshots.load_chunk(0) is None
    assert snapshots.load_total_chunks() is None
    assert kv.values == {}


def test_snapshot_store_clear_removes_chunks_and_count() -> None:
    kv = InMemoryKeyValueStore()
    snapshots = SnapshotStore(kv, clock=lambda: 1_000.0)
    snapshots.save_chunk(CacheEntry(value=_chunk(0), fetched_at=1_000.0), ttl_seconds=300)
    snapshots.save_total_chunks(CacheEntry(value=141, fetched_at=1_000.0), ttl_seconds=600)
    kv.set("unrelated", "kept")

    snapshots.clear()

    assert kv.values == {"unrelated": "kept"}


@pytest.mark.asyncio
async def test_chunk_cache_reuses_snapshot_across_instances() -> None:
    kv = InMemoryKeyValueStore()
    clock = lambda: 1_000.0  # noqa: E731
    first_store = CountingChunkStore()
    await ChunkCache(first_store, snapshots=SnapshotStore(kv, clock=clock), clock=clock).get(3)

    second_store = CountingChunkStore()
    cache = ChunkCache(second_store, snapshots=SnapshotStore(kv, clock=clock), clock=clock)
    chunk = await cache.get(3)

    assert first_store.calls == [3]
    assert second_store.calls == []
    assert chunk.orders[0].id == "3-0"


@pytest.mark.asyncio
async def test_broken_snapshot_store_never_blocks_fetching() -> None:
    store = CountingChunkStore(keys=["chunk:0"])
    snapshots = SnapshotStore(BrokenKeyValueStore(), clock=lambda: 1_000.0)

    chunk = await ChunkCache(store, snapshots=snapshots).get(0)
    total = await TotalChunksCache(store, snapshots=snapshots).get()

    assert chunk.index == 0
    assert total == 1
    assert snapshots.persisted_chunk_indexes() == []


@pytest.mark.asyncio
async def test_fallback_chunk_count_is_not_persisted() -> None:
    kv = InMemoryKeyValueStore()
    snapshots = SnapshotStore(kv, clock=lambda: 1_000.0)

    total = await TotalChunksCache(CountingChunkStore(), default_total=140, snapshots=snapshots).get()

    assert total == 140
    assert TOTAL_CHUNKS_KEY not in kv.values


class ThreadRecordingKeyValueStore(InMemoryKeyValueStore):
    def __init__(self) -> None:
        super().__init__()
        self.threads: set[int] = set()

    def get(self, key: str) -> str | None:
        self.threads.add(threading.get_ident())
        return super().get(key)

    def set(self, key: str, value: str) -> None:
        self.threads.add(threading.get_ident())
        super().set(key, value)


@pytest.mark.asyncio
async def test_snapshot_io_runs_off_the_event_loop_thread() -> None:
    kv = ThreadRecordingKeyValueStore()
    snapshots = SnapshotStore(kv, clock=lambda: 1_000.0)
    store = CountingChunkStore(keys=["chunk:0", "chunk:1"])

    await ChunkCache(store, snapshots=snapshots, clock=lambda: 1_000.0).get(1)
    await TotalChunksCache(store, snapshots=snapshots, clock=lambda: 1_000.0).get()

    assert f"{CHUNK_KEY_PREFIX}1" in kv.values
    assert TOTAL_CHUNKS_KEY in kv.values
    assert kv.threads
    assert threading.get_ident() not in kv.threads


@pytest.mark.asyncio
async def test_chunk_fetched_across_a_clear_is_not_persisted() -> None:
    kv = InMemoryKeyValueStore()
    snapshots = SnapshotStore(kv, clock=lambda: 1_000.0)
    started = asyncio.Event()
    release = asyncio.Event()

    class GatedStore(CountingChunkStore):
        async def fetch_chunk(self, index: int) -> Chunk:
            started.set()
            await release.wait()
            return await super().fetch_chunk(index)

    cache = ChunkCache(GatedStore(), snapshots=snapshots, clock=lambda: 1_000.0)
    pending = asyncio.create_task(cache.get(2))
    await started.wait()
    cache.clear()
    snapshots.clear()
    release.set()
    await pending

    assert cache.cached_indexes() == []
    assert snapshots.persisted_chunk_indexes() == []
