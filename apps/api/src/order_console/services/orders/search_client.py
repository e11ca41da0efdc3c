from __future__ import annotations

import logging
from typing import Protocol

import httpx

from order_console.services.orders.types import SearchHit

logger = logging.getLogger(__name__)


class SearchClientError(RuntimeError):
    pass


class SearchClient(Protocol):
    async def search(self, query: str, *, hits_per_page: int) -> list[SearchHit]: ...


class HttpSearchClient:
    def __init__(
        self,
        *,
        base_url: str,
        project: str,
        table: str,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._project = project
        self._table = table
        self._timeout_seconds = timeout_seconds
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def search(self, query: str, *, hits_per_page: int) -> list[SearchHit]:
        try:
            response = await self._client.post(
                f"{self._base_url}/search/query",
                json={
                    "project": self._project,
                    "table": self._table,
                    "query": query,
                    "hitsPerPage": hits_per_page,
                    "page": 0,
                },
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise SearchClientError(str(exc)) from exc
        except ValueError as exc:
            raise SearchClientError(f"Invalid search payload: {exc}") from exc

        hits = payload.get("hits") if isinstance(payload, dict) else None
        if not isinstance(hits, list):
            logger.warning("Search response for %r has no hits array", query)
            return []

        return [SearchHit(raw=hit) for hit in hits if isinstance(hit, dict)]
