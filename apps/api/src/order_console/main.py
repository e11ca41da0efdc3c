from datetime import date
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from order_console.config import configure_logging, get_settings
from order_console.db import create_schema
from order_console.services.orders import (
    AdvancedFilters,
    ChunkFetchError,
    FilterState,
    NumericRange,
    OrderDataService,
    PageResult,
    build_order_service,
)
from order_console.services.orders.serialization import order_to_dict, parsed_query_to_dict

app = FastAPI(title="Order Console API", version="0.1.0")


class AdvancedFiltersRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    order_statuses: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)
    price_min: float | None = None
    price_max: float | None = None
    date_start: date | None = None
    date_end: date | None = None


class RangeFilterRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min: float = 0
    max: float = 0


class FilterRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page: int = 1
    search_query: str = ""
    query_text: str = ""
    advanced: AdvancedFiltersRequest = Field(default_factory=AdvancedFiltersRequest)
    column_filters: dict[str, RangeFilterRequest | list[str] | str] = Field(default_factory=dict)


class WarmRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chunk_indexes: list[int] | None = None


@lru_cache
def get_order_service() -> OrderDataService:
    return build_order_service(get_settings())


@app.on_event("startup")
def startup() -> None:
    settings = get_settings()
    configure_logging(settings)
    if settings.persist_snapshots:
        create_schema()


@app.on_event("shutdown")
async def shutdown() -> None:
    if get_order_service.cache_info().currsize:
        await get_order_service().aclose()


def _page_payload(result: PageResult) -> dict[str, Any]:
    return {
        "orders": [order_to_dict(order) for order in result.orders],
        "total_chunks": result.total_chunks,
        "current_chunk": result.current_chunk,
        "has_more": result.has_more,
        "page": result.page,
        "corrected_from": result.corrected_from,
        "is_placeholder": result.is_placeholder,
        "notice": result.notice,
    }


def _filter_state(request: FilterRequest) -> FilterState:
    column_filters: dict[str, Any] = {}
    for column, value in request.column_filters.items():
        if isinstance(value, RangeFilterRequest):
            column_filters[column] = NumericRange(min=value.min, max=value.max)
        else:
            column_filters[column] = value

    advanced = request.advanced
    return FilterState(
        search_query=request.search_query,
        query_text=request.query_text,
        advanced=AdvancedFilters(
            order_statuses=tuple(advanced.order_statuses),
            tags=tuple(advanced.tags),
            channels=tuple(advanced.channels),
            price_min=advanced.price_min,
            price_max=advanced.price_max,
            date_start=advanced.date_start,
            date_end=advanced.date_end,
        ),
        column_filters=column_filters,
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/orders")
async def list_orders(
    service: Annotated[OrderDataService, Depends(get_order_service)],
    page: int = 1,
    page_size: int | None = Query(default=None),
) -> dict[str, Any]:
    try:
        result = await service.get_page_or_placeholder(page, page_size)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _page_payload(result)


@app.get("/orders/search")
async def search_orders(
    q: str,
    service: Annotated[OrderDataService, Depends(get_order_service)],
) -> dict[str, Any]:
    if not q.strip():
        raise HTTPException(status_code=400, detail="q must not be empty")

    orders = await service.search_now(q)
    return {"query": q.strip().lower(), "orders": [order_to_dict(order) for order in orders]}


@app.get("/orders/query")
async def query_orders(
    q: str,
    service: Annotated[OrderDataService, Depends(get_order_service)],
    page: int = 1,
) -> dict[str, Any]:
    parsed = service.parse_query(q)
    try:
        result = await service.get_page(page)
    except ChunkFetchError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    orders = service.apply_query(result.orders, parsed)
    return {
        "parsed": parsed_query_to_dict(parsed),
        "page": result.page,
        "orders": [order_to_dict(order) for order in orders],
    }


@app.post("/orders/filter")
async def filter_orders(
    request: FilterRequest,
    service: Annotated[OrderDataService, Depends(get_order_service)],
) -> dict[str, Any]:
    try:
        page = await service.get_page(request.page)
        result = await service.filter_orders(_filter_state(request), page.orders)
    except ChunkFetchError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "source": result.source.value,
        "page": page.page,
        "count": len(result.orders),
        "orders": [order_to_dict(order) for order in result.orders],
    }


@app.get("/cache/status")
def cache_status(
    service: Annotated[OrderDataService, Depends(get_order_service)],
) -> dict[str, Any]:
    status = service.cache_status()
    return {
        "total_chunks": status.total_chunks,
        "cached_chunks": list(status.cached_chunks),
        "fresh_chunks": list(status.fresh_chunks),
        "persisted_chunks": list(status.persisted_chunks),
        "pending_prefetches": status.pending_prefetches,
        "chunk_ttl_seconds": status.chunk_ttl_seconds,
    }


@app.post("/cache/warm")
async def warm_cache(
    service: Annotated[OrderDataService, Depends(get_order_service)],
    request: WarmRequest | None = None,
) -> dict[str, Any]:
    report = await service.warm(request.chunk_indexes if request is not None else None)
    return {
        "total_chunks": report.total_chunks,
        "warmed_chunks": list(report.warmed_chunks),
        "failed_chunks": list(report.failed_chunks),
    }


@app.delete("/cache")
async def clear_cache(
    service: Annotated[OrderDataService, Depends(get_order_service)],
) -> dict[str, str]:
    await service.clear_cache()
    return {"status": "cleared"}


def run() -> None:
    import uvicorn

    uvicorn.run("order_console.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
