from datetime import datetime, timezone

import pytest

from order_console.services.orders.evaluator import apply_query, evaluate, matches, searchable_text
from order_console.services.orders.query_parser import parse_query
from order_console.services.orders.types import ParsedCondition, ParsedQuery


def test_date_equality_compares_calendar_day_only(make_order) -> None:
    order = make_order("1", created_at=datetime(2024, 6, 11, 23, 59, tzinfo=timezone.utc))

    assert evaluate(order, ParsedCondition("created_at", "=", "2024-06-11"))
    assert not evaluate(order, ParsedCondition("created_at", "=", "2024-06-12"))
    assert evaluate(order, ParsedCondition("created_at", "!=", "2024-06-12"))


def test_date_comparisons_and_contains(make_order) -> None:
    order = make_order("1", created_at=datetime(2024, 6, 11, 8, 0, tzinfo=timezone.utc))

    assert evaluate(order, ParsedCondition("created_at", ">", "2024-06-01"))
    assert not evaluate(order, ParsedCondition("created_at", "<", "2024-06-01"))
    assert evaluate(order, ParsedCondition("created_at", "contains", "2024-06"))
    assert evaluate(order, ParsedCondition("created_at", "contains", "6/11/2024"))
    assert not evaluate(order, ParsedCondition("created_at", "=", "not a date"))


def test_numeric_columns_compare_numbers_and_match_partial_digits(make_order) -> None:
    order = make_order("1", total=1250.0, items=3)

    assert evaluate(order, ParsedCondition("total", ">", 1000.0))
    assert evaluate(order, ParsedCondition("total", "<=", "1250"))
    assert not evaluate(order, ParsedCondition("total", "=", 1000.0))
    assert evaluate(order, ParsedCondition("total", "contains", "125"))
    assert evaluate(order, ParsedCondition("items", "=", 3.0))
    assert not evaluate(order, ParsedCondition("total", ">", "lots"))


def test_array_columns_require_exact_element_for_equality(make_order) -> None:
    order = make_order("1", tags=("VIP", "repeat-buyer"))

    assert evaluate(order, ParsedCondition("tags", "=", "vip"))
    assert not evaluate(order, ParsedCondition("tags", "=", "repeat"))
    assert evaluate(order, ParsedCondition("tags", "contains", "repeat"))
    assert evaluate(order, ParsedCondition("tags", "!=", "wholesale"))


def test_string_columns_exact_for_equality_substring_otherwise(make_order) -> None:
    order = make_order("1", customer_name="Jane Doe")

    assert evaluate(order, ParsedCondition("customer_name", "=", "jane doe"))
    assert not evaluate(order, ParsedCondition("customer_name", "=", "jane"))
    assert evaluate(order, ParsedCondition("customer_name", "contains", "JANE"))
    assert evaluate(order, ParsedCondition("customer_name", "!=", "john"))


def test_all_column_searches_concatenated_fields(make_order) -> None:
    order = make_order(
        "1",
        order_number="#INK1001",
        channel="Instagram",
        tags=("gift",),
        total=1999.0,
        created_at=datetime(2024, 6, 11, 10, 0, tzinfo=timezone.utc),
    )

    text = searchable_text(order)

    assert "#ink1001" in text
    assert "1999" in text
    assert "6/11/2024" in text
    assert evaluate(order, ParsedCondition("all", "contains", "instagram"))
    assert evaluate(order, ParsedCondition("all", "contains", "GIFT"))


def test_conditions_fold_left_to_right(make_order) -> None:
    order = make_order("1", status="pending", total=500.0)
    conditions = (
        ParsedCondition("status", "=", "paid"),
        ParsedCondition("total", ">", 1000.0, connector="AND"),
        ParsedCondition("total", "=", 500.0, connector="OR"),
    )

    # (false AND false) OR true
    assert matches(order, conditions)
    assert not matches(order, conditions[:2])


def test_apply_query_filters_orders(make_order) -> None:
    orders = [
        make_order("1", status="paid", total=1500.0),
        make_order("2", status="paid", total=200.0),
        make_order("3", status="refunded", financial_status="refunded", payment_status="refunded", total=5000.0),
    ]

    result = apply_query(orders, parse_query("paid AND >1000"))

    assert [order.id for order in result] == ["1"]


@pytest.mark.parametrize("parsed", [ParsedQuery(), parse_query("colour:red")])
def test_apply_query_with_invalid_query_returns_input(make_order, parsed: ParsedQuery) -> None:
    orders = [make_order("1"), make_order("2")]

    assert apply_query(orders, parsed) == orders
