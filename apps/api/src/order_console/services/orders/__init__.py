from order_console.services.orders.chunk_client import ChunkFetchError, ChunkStoreError
from order_console.services.orders.evaluator import apply_query, evaluate
from order_console.services.orders.filters import (
    FilterState,
    NumericRange,
    ResultSource,
    apply_column_filters,
    select_result_source,
    unique_channels,
    unique_tags,
    unique_values,
)
from order_console.services.orders.query_parser import parse_query
from order_console.services.orders.search import AdvancedFilters
from order_console.services.orders.service import OrderDataService, build_order_service
from order_console.services.orders.types import Order, PageResult, ParsedCondition, ParsedQuery

__all__ = [
    "AdvancedFilters",
    "ChunkFetchError",
    "ChunkStoreError",
    "FilterState",
    "NumericRange",
    "Order",
    "OrderDataService",
    "PageResult",
    "ParsedCondition",
    "ParsedQuery",
    "ResultSource",
    "apply_column_filters",
    "apply_query",
    "build_order_service",
    "evaluate",
    "parse_query",
    "select_result_source",
    "unique_channels",
    "unique_tags",
    "unique_values",
]
