from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from order_console.services.orders.normalize import NormalizationError, order_from_raw
from order_console.services.orders.types import Chunk, Order

logger = logging.getLogger(__name__)


class ChunkStoreError(RuntimeError):
    pass


class ChunkFetchError(ChunkStoreError):
    def __init__(self, chunk_index: int, attempts: int, message: str) -> None:
        super().__init__(
            f"Failed to fetch chunk {chunk_index} after {attempts} attempt(s): {message}"
        )
        self.chunk_index = chunk_index
        self.attempts = attempts


class ChunkStore(Protocol):
    async def fetch_chunk(self, index: int) -> Chunk: ...

    async def fetch_chunk_keys(self) -> list[str] | None: ...


def normalize_chunk(index: int, items: list[Any]) -> Chunk:
    orders: list[Order] = []
    dropped = 0
    for position, item in enumerate(items):
        try:
            orders.append(order_from_raw(item, fallback_id=f"order-{index}-{position}"))
        except NormalizationError as exc:
            dropped += 1
            logger.debug("Dropping record %s of chunk %s: %s", position, index, exc)

    if dropped:
        logger.warning("Dropped %s malformed record(s) from chunk %s", dropped, index)
    return Chunk(index=index, orders=tuple(orders))


class HttpChunkStore:
    def __init__(
        self,
        *,
        base_url: str,
        project: str,
        table: str,
        timeout_seconds: float = 30.0,
        metadata_timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._project = project
        self._table = table
        self._timeout_seconds = timeout_seconds
        self._metadata_timeout_seconds = metadata_timeout_seconds
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, params: dict[str, str], *, timeout: float) -> Any:
        try:
            response = await self._client.get(
                f"{self._base_url}/cache/data",
                params=params,
                headers={"Accept": "application/json"},
                timeout=timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ChunkStoreError(str(exc)) from exc

        try:
            return response.json()
        except ValueError:
            logger.warning("Response for %s is not valid JSON", params)
            return None

    async def fetch_chunk(self, index: int) -> Chunk:
        payload = await self._get_json(
            {"project": self._project, "table": self._table, "key": f"chunk:{index}"},
            timeout=self._timeout_seconds,
        )

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            logger.warning("Chunk %s has no valid data array; treating it as empty", index)
            return Chunk(index=index, orders=())

        return normalize_chunk(index, data)

    async def fetch_chunk_keys(self) -> list[str] | None:
        payload = await self._get_json(
            {"project": self._project, "table": self._table},
            timeout=self._metadata_timeout_seconds,
        )

        keys = payload.get("keys") if isinstance(payload, dict) else None
        if not isinstance(keys, list):
            logger.warning("Chunk key listing is missing a keys array")
            return None
        return [str(key) for key in keys]
