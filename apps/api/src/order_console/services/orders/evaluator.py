from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
import operator as op
from typing import Any, Callable

from order_console.services.orders.normalize import parse_timestamp
from order_console.services.orders.query_parser import ALL_COLUMN
from order_console.services.orders.types import CONTAINS, Order, ParsedCondition, ParsedQuery

DATE_COLUMNS = frozenset({"created_at", "updated_at"})
NUMERIC_COLUMNS = frozenset({"total", "items"})
ARRAY_COLUMNS = frozenset({"tags"})

_ORDERING: dict[str, Callable[[Any, Any], bool]] = {
    "<": op.lt,
    "<=": op.le,
    ">": op.gt,
    ">=": op.ge,
}


def format_number(value: float | int) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def date_strings(value: datetime) -> tuple[str, str]:
    day = value.astimezone(timezone.utc)
    return day.date().isoformat(), f"{day.month}/{day.day}/{day.year}"


def searchable_text(order: Order) -> str:
    fields = [
        order.order_number,
        order.customer_name,
        order.customer_email,
        order.status,
        order.fulfillment_status,
        order.financial_status,
        order.channel,
        order.delivery_method,
        *order.tags,
        format_number(order.total),
        format_number(order.items),
        *date_strings(order.created_at),
        *date_strings(order.updated_at),
    ]
    return " ".join(field for field in fields if field).lower()


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _evaluate_date(value: datetime, operator: str, search_value: str | float) -> bool:
    if operator == CONTAINS:
        needle = str(search_value).strip().lower()
        return any(needle in text for text in date_strings(value))

    search_date = parse_timestamp(str(search_value).strip())
    if search_date is None:
        return False

    actual = value.astimezone(timezone.utc)
    expected = search_date.astimezone(timezone.utc)
    if operator == "=":
        return actual.date() == expected.date()
    if operator == "!=":
        return actual.date() != expected.date()
    return _ORDERING[operator](actual, expected)


def _evaluate_number(value: float | int, operator: str, search_value: str | float) -> bool:
    if operator == CONTAINS:
        needle = str(search_value).strip()
        if isinstance(search_value, float):
            needle = format_number(search_value)
        return needle in format_number(value)

    expected = _to_float(search_value)
    if expected is None:
        return False
    if operator == "=":
        return float(value) == expected
    if operator == "!=":
        return float(value) != expected
    return _ORDERING[operator](float(value), expected)


def _evaluate_array(values: Sequence[str], operator: str, search_value: str | float) -> bool:
    needle = str(search_value).strip().lower()
    lowered = [str(item).lower() for item in values]
    if operator == "=":
        return needle in lowered
    if operator == "!=":
        return needle not in lowered
    return any(needle in item for item in lowered)


def _evaluate_text(value: Any, operator: str, search_value: str | float) -> bool:
    actual = str(value).lower()
    needle = str(search_value).strip().lower()
    if operator == "=":
        return actual == needle
    if operator == "!=":
        return actual != needle
    return needle in actual


def evaluate(order: Order, condition: ParsedCondition) -> bool:
    if condition.column == ALL_COLUMN:
        return str(condition.value).strip().lower() in searchable_text(order)

    value = getattr(order, condition.column, None)
    if value is None:
        return False

    if condition.column in DATE_COLUMNS:
        return _evaluate_date(value, condition.operator, condition.value)
    if condition.column in NUMERIC_COLUMNS:
        return _evaluate_number(value, condition.operator, condition.value)
    if condition.column in ARRAY_COLUMNS:
        return _evaluate_array(value, condition.operator, condition.value)
    if condition.operator in _ORDERING:
        # Ordering comparisons on free text are not meaningful.
        return False
    return _evaluate_text(value, condition.operator, condition.value)


def matches(order: Order, conditions: Sequence[ParsedCondition]) -> bool:
    if not conditions:
        return True

    result = evaluate(order, conditions[0])
    for condition in conditions[1:]:
        if condition.connector == "OR":
            result = result or evaluate(order, condition)
        else:
            result = result and evaluate(order, condition)
    return result


def apply_query(orders: Iterable[Order], parsed: ParsedQuery) -> list[Order]:
    if not parsed.is_valid:
        return list(orders)
    return [order for order in orders if matches(order, parsed.conditions)]
