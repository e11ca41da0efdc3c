from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from typing import Any, Callable, Protocol

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from order_console.models import CacheEntryRecord
from order_console.services.orders.serialization import chunk_from_dict, chunk_to_dict
from order_console.services.orders.types import CacheEntry, Chunk

logger = logging.getLogger(__name__)

CHUNK_KEY_PREFIX = "orders:chunk:"
TOTAL_CHUNKS_KEY = "orders:total_chunks"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class SqlKeyValueStore:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get(self, key: str) -> str | None:
        with Session(self._engine) as session:
            record = session.get(CacheEntryRecord, key)
            return record.value if record is not None else None

    def set(self, key: str, value: str) -> None:
        with Session(self._engine) as session:
            record = session.get(CacheEntryRecord, key)
            if record is None:
                session.add(CacheEntryRecord(key=key, value=value))
            else:
                record.value = value
                record.updated_at = datetime.now(timezone.utc)
            session.commit()

    def delete(self, key: str) -> None:
        with Session(self._engine) as session:
            session.execute(delete(CacheEntryRecord).where(CacheEntryRecord.key == key))
            session.commit()

    def keys(self, prefix: str = "") -> list[str]:
        with Session(self._engine) as session:
            stmt = select(CacheEntryRecord.key)
            if prefix:
                stmt = stmt.where(CacheEntryRecord.key.startswith(prefix, autoescape=True))
            return list(session.scalars(stmt.order_by(CacheEntryRecord.key)).all())


class SnapshotStore:
    """Best-effort cross-session copy of the chunk and chunk-count caches.

    Each value is stored as a JSON envelope carrying the time it was saved and
    its TTL. Any failure of the underlying store, and any envelope that cannot
    be decoded, is logged and treated as a miss.
    """

    def __init__(self, store: KeyValueStore, *, clock: Callable[[], float]) -> None:
        self._store = store
        self._clock = clock

    def _save(self, key: str, value: Any, *, saved_at: float, ttl_seconds: float) -> None:
        envelope = json.dumps(
            {"saved_at": saved_at, "ttl_seconds": ttl_seconds, "value": value},
            separators=(",", ":"),
        )
        try:
            self._store.set(key, envelope)
        except Exception as exc:
            logger.warning("Could not persist snapshot %s: %r", key, exc)

    def _load(self, key: str) -> tuple[Any, float] | None:
        try:
            raw = self._store.get(key)
        except Exception as exc:
            logger.warning("Could not read snapshot %s: %r", key, exc)
            return None
        if raw is None:
            return None

        try:
            envelope = json.loads(raw)
            saved_at = float(envelope["saved_at"])
            ttl_seconds = float(envelope["ttl_seconds"])
            value = envelope["value"]
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Discarding corrupt snapshot %s: %r", key, exc)
            self._forget(key)
            return None

        if not CacheEntry(value=value, fetched_at=saved_at).is_fresh(self._clock(), ttl_seconds):
            return None
        return value, saved_at

    def _forget(self, key: str) -> None:
        try:
            self._store.delete(key)
        except Exception as exc:
            logger.warning("Could not delete snapshot %s: %r", key, exc)

    def save_chunk(self, entry: CacheEntry[Chunk], *, ttl_seconds: float) -> None:
        self._save(
            f"{CHUNK_KEY_PREFIX}{entry.value.index}",
            chunk_to_dict(entry.value),
            saved_at=entry.fetched_at,
            ttl_seconds=ttl_seconds,
        )

    def load_chunk(self, index: int) -> CacheEntry[Chunk] | None:
        key = f"{CHUNK_KEY_PREFIX}{index}"
        loaded = self._load(key)
        if loaded is None:
            return None

        value, saved_at = loaded
        try:
            chunk = chunk_from_dict(value)
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Discarding corrupt chunk snapshot %s: %r", key, exc)
            self._forget(key)
            return None
        return CacheEntry(value=chunk, fetched_at=saved_at)

    def discard_chunk(self, index: int) -> None:
        self._forget(f"{CHUNK_KEY_PREFIX}{index}")

    def save_total_chunks(self, entry: CacheEntry[int], *, ttl_seconds: float) -> None:
        self._save(
            TOTAL_CHUNKS_KEY,
            entry.value,
            saved_at=entry.fetched_at,
            ttl_seconds=ttl_seconds,
        )

    def load_total_chunks(self) -> CacheEntry[int] | None:
        loaded = self._load(TOTAL_CHUNKS_KEY)
        if loaded is None:
            return None

        value, saved_at = loaded
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            logger.warning("Discarding invalid chunk-count snapshot: %r", value)
            self._forget(TOTAL_CHUNKS_KEY)
            return None
        return CacheEntry(value=value, fetched_at=saved_at)

    def discard_total_chunks(self) -> None:
        self._forget(TOTAL_CHUNKS_KEY)

    def persisted_chunk_indexes(self) -> list[int]:
        try:
            keys = self._store.keys(CHUNK_KEY_PREFIX)
        except Exception as exc:
            logger.warning("Could not list chunk snapshots: %r", exc)
            return []

        indexes: list[int] = []
        for key in keys:
            suffix = key[len(CHUNK_KEY_PREFIX):]
            if suffix.isdigit():
                indexes.append(int(suffix))
        return sorted(indexes)

    def clear(self) -> None:
        try:
            keys = self._store.keys(CHUNK_KEY_PREFIX) + [TOTAL_CHUNKS_KEY]
        except Exception as exc:
            logger.warning("Could not list snapshots to clear: %r", exc)
            return
        for key in keys:
            self._forget(key)
