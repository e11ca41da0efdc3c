from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, fields
from enum import Enum
import re
from typing import Any

from order_console.services.orders.evaluator import DATE_COLUMNS, NUMERIC_COLUMNS, format_number
from order_console.services.orders.normalize import parse_timestamp
from order_console.services.orders.search import AdvancedFilters
from order_console.services.orders.types import Order

FILTERABLE_COLUMNS = frozenset(
    item.name
    for item in fields(Order)
    if item.name not in {"line_items", "shipping_address", "billing_address", "highlight"}
)

_NUMERIC_FILTER = re.compile(r"^(>=|<=|>|<|=)\s*(-?\d+(?:\.\d+)?)$")


class ResultSource(str, Enum):
    STRUCTURED_FILTER = "structured_filter"
    REMOTE_SEARCH = "remote_search"
    LOCAL_QUERY = "local_query"
    UNFILTERED = "unfiltered"


def select_result_source(
    *,
    structured_filter_active: bool,
    search_active: bool,
    query_active: bool,
) -> ResultSource:
    if structured_filter_active:
        return ResultSource.STRUCTURED_FILTER
    if search_active:
        return ResultSource.REMOTE_SEARCH
    if query_active:
        return ResultSource.LOCAL_QUERY
    return ResultSource.UNFILTERED


@dataclass(frozen=True)
class NumericRange:
    """Inclusive range; a bound of 0 leaves that side open."""

    min: float = 0
    max: float = 0

    @property
    def is_open(self) -> bool:
        return not self.min and not self.max

    def contains(self, value: float) -> bool:
        if self.min and value < self.min:
            return False
        if self.max and value > self.max:
            return False
        return True


@dataclass(frozen=True)
class FilterState:
    search_query: str = ""
    query_text: str = ""
    advanced: AdvancedFilters = field(default_factory=AdvancedFilters)
    column_filters: Mapping[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> ResultSource:
        return select_result_source(
            structured_filter_active=self.advanced.is_active,
            search_active=bool(self.search_query.strip()),
            query_active=bool(self.query_text.strip()),
        )


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, NumericRange):
        return value.is_open
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset)):
        return not value
    return False


def _match_numeric_text(actual: float, text: str) -> bool:
    match = _NUMERIC_FILTER.match(text.strip())
    if match is None:
        return text.strip() in format_number(actual)

    threshold = float(match.group(2))
    operator = match.group(1)
    if operator == ">":
        return actual > threshold
    if operator == ">=":
        return actual >= threshold
    if operator == "<":
        return actual < threshold
    if operator == "<=":
        return actual <= threshold
    return actual == threshold


def _match_column(order: Order, column: str, value: Any) -> bool:
    actual = getattr(order, column)

    if isinstance(value, NumericRange):
        if column not in NUMERIC_COLUMNS:
            raise ValueError(f"Range filters apply only to numeric columns, not {column!r}")
        return value.contains(float(actual))

    if isinstance(value, (list, tuple, set, frozenset)):
        selected = {str(item) for item in value}
        if column == "tags":
            return any(tag in selected for tag in actual)
        return str(actual) in selected

    text = str(value)
    if column in NUMERIC_COLUMNS:
        return _match_numeric_text(float(actual), text)
    if column in DATE_COLUMNS:
        wanted = parse_timestamp(text.strip())
        if wanted is None:
            return False
        return actual.astimezone(wanted.tzinfo).date() == wanted.date()
    if column == "tags":
        return any(text.lower() in tag.lower() for tag in actual)
    return text.lower() in str(actual).lower()


def apply_column_filters(orders: Iterable[Order], column_filters: Mapping[str, Any]) -> list[Order]:
    """Narrow orders by per-column filters; empty filter values are ignored.

    Lists are multi-select, ``NumericRange`` bounds numeric columns, text on a
    numeric column may carry a comparison prefix (``>100``), text on a date
    column matches the calendar day and any other text is a case-insensitive
    substring match.
    """
    active = {column: value for column, value in column_filters.items() if not _is_empty(value)}
    unknown = set(active) - FILTERABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown filter column(s): {', '.join(sorted(unknown))}")

    return [
        order
        for order in orders
        if all(_match_column(order, column, value) for column, value in active.items())
    ]


def _unique_casefold(values: Iterable[str]) -> list[str]:
    unique: dict[str, str] = {}
    for value in values:
        if value:
            unique.setdefault(value.lower(), value)
    return [unique[key] for key in sorted(unique)]


def unique_tags(orders: Iterable[Order]) -> list[str]:
    return _unique_casefold(tag for order in orders for tag in order.tags)


def unique_channels(orders: Iterable[Order]) -> list[str]:
    return _unique_casefold(order.channel for order in orders)


def unique_values(orders: Sequence[Order], column: str) -> list[str]:
    if column not in FILTERABLE_COLUMNS:
        raise ValueError(f"Unknown column: {column!r}")

    values: set[str] = set()
    for order in orders:
        value = getattr(order, column)
        if isinstance(value, tuple):
            values.update(str(item) for item in value)
        elif value is not None:
            values.add(str(value))
    return sorted(values)
