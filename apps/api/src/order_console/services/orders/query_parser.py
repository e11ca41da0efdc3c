from __future__ import annotations

import logging
import re

from order_console.services.orders.types import (
    COMPARISON_OPERATORS,
    CONTAINS,
    Connector,
    ParsedCondition,
    ParsedQuery,
)

logger = logging.getLogger(__name__)

ALL_COLUMN = "all"
TOTAL_COLUMN = "total"
CREATED_COLUMN = "created_at"

COLUMN_MAPPING: dict[str, str] = {
    "order": "order_number",
    "ordernumber": "order_number",
    "order_number": "order_number",
    "number": "order_number",
    "status": "status",
    "orderstatus": "status",
    "customer": "customer_name",
    "customername": "customer_name",
    "customer_name": "customer_name",
    "name": "customer_name",
    "total": "total",
    "amount": "total",
    "price": "total",
    "ordertotal": "total",
    "channel": "channel",
    "source": "channel",
    "platform": "channel",
    "delivery": "delivery_method",
    "deliverymethod": "delivery_method",
    "delivery_method": "delivery_method",
    "shipping": "delivery_method",
    "created": "created_at",
    "createdat": "created_at",
    "created_at": "created_at",
    "datecreated": "created_at",
    "updated": "updated_at",
    "updatedat": "updated_at",
    "updated_at": "updated_at",
    "dateupdated": "updated_at",
    "modified": "updated_at",
    "tag": "tags",
    "tags": "tags",
    "email": "customer_email",
    "customeremail": "customer_email",
    "customer_email": "customer_email",
    "id": "id",
    "orderid": "id",
    "serial": "id",
    "items": "items",
    "quantity": "items",
    "fulfillment": "fulfillment_status",
    "fulfillmentstatus": "fulfillment_status",
    "financial": "financial_status",
    "financialstatus": "financial_status",
    "payment": "financial_status",
    "paymentstatus": "financial_status",
}

_OPERATOR = "(" + "|".join(re.escape(operator) for operator in COMPARISON_OPERATORS) + ")"
_DATE = r"\d{4}-\d{2}-\d{2}"
_NUMBER = r"\d+(?:\.\d+)?"

# Split on AND/OR only outside double quotes.
_CONNECTOR_SPLIT = re.compile(r'\s+(AND|OR)\s+(?=(?:[^"]*"[^"]*")*[^"]*$)', re.IGNORECASE)
_QUOTED = re.compile(r'^([^:"]+):"([^"]+)"$')
_COLON = re.compile(r"^([^:]+):(.+)$")
_COMPARISON = re.compile(rf"^([^<>=!]+?)\s*{_OPERATOR}\s*(.+)$")
_BARE_NUMERIC_COMPARISON = re.compile(rf"^{_OPERATOR}\s*({_NUMBER})$")
_BARE_INTEGER = re.compile(r"^\d+$")
_ITEM_COUNT = re.compile(r"^(\d+)\s+items$", re.IGNORECASE)
_DATE_LITERAL = re.compile(rf"^(?:{_OPERATOR}\s*)?({_DATE})$")


def map_column(name: str) -> str | None:
    return COLUMN_MAPPING.get(name.strip().lower())


def _parse_segment(segment: str) -> ParsedCondition | None:
    text = segment.strip()
    if not text:
        return None

    quoted = _QUOTED.match(text)
    if quoted:
        column = map_column(quoted.group(1))
        if column is None:
            logger.debug("Dropping condition with unknown column: %r", text)
            return None
        return ParsedCondition(column=column, operator=CONTAINS, value=quoted.group(2))

    colon = _COLON.match(text)
    if colon:
        column = map_column(colon.group(1))
        if column is None:
            logger.debug("Dropping condition with unknown column: %r", text)
            return None
        value = colon.group(2).strip().strip('"')
        if not value:
            return None
        return ParsedCondition(column=column, operator=CONTAINS, value=value)

    comparison = _COMPARISON.match(text)
    if comparison:
        column = map_column(comparison.group(1))
        if column is None:
            logger.debug("Dropping condition with unknown column: %r", text)
            return None
        return ParsedCondition(
            column=column,
            operator=comparison.group(2),
            value=comparison.group(3).strip().strip('"'),
        )

    bare_comparison = _BARE_NUMERIC_COMPARISON.match(text)
    if bare_comparison:
        return ParsedCondition(
            column=TOTAL_COLUMN,
            operator=bare_comparison.group(1),
            value=float(bare_comparison.group(2)),
        )

    if _BARE_INTEGER.match(text):
        return ParsedCondition(column=TOTAL_COLUMN, operator="=", value=float(text))

    item_count = _ITEM_COUNT.match(text)
    if item_count:
        return ParsedCondition(column="items", operator="=", value=float(item_count.group(1)))

    date_literal = _DATE_LITERAL.match(text)
    if date_literal:
        return ParsedCondition(
            column=CREATED_COLUMN,
            operator=date_literal.group(1) or "=",
            value=date_literal.group(2),
        )

    return ParsedCondition(column=ALL_COLUMN, operator=CONTAINS, value=text)


def parse_query(query: str) -> ParsedQuery:
    """Parse a one-line boolean search expression.

    Segments are joined by AND/OR. Each emitted condition carries the
    connector that joins it to the previous condition; the first carries none.
    Segments that cannot be parsed are dropped.
    """
    if not query or not query.strip():
        return ParsedQuery(conditions=(), error="no conditions")

    parts = _CONNECTOR_SPLIT.split(query.strip())
    conditions: list[ParsedCondition] = []
    pending_connector: Connector | None = None

    for position in range(0, len(parts), 2):
        if position > 0:
            connector = parts[position - 1].upper()
            pending_connector = "OR" if connector == "OR" else "AND"

        condition = _parse_segment(parts[position])
        if condition is None:
            continue

        conditions.append(
            ParsedCondition(
                column=condition.column,
                operator=condition.operator,
                value=condition.value,
                connector=pending_connector if conditions else None,
            )
        )

    if not conditions:
        return ParsedQuery(conditions=(), error="no conditions")
    return ParsedQuery(conditions=tuple(conditions))
