from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict
from typing import Any

from order_console.services.orders.normalize import parse_timestamp
from order_console.services.orders.types import (
    Address,
    Chunk,
    LineItem,
    Order,
    ParsedCondition,
    ParsedQuery,
)


def order_to_dict(order: Order) -> dict[str, Any]:
    payload = asdict(order)
    payload["tags"] = list(order.tags)
    payload["line_items"] = [asdict(item) for item in order.line_items]
    payload["created_at"] = order.created_at.isoformat()
    payload["updated_at"] = order.updated_at.isoformat()
    payload["highlight"] = dict(order.highlight) if order.highlight is not None else None
    return payload


def _address_from_dict(value: Any) -> Address | None:
    if not isinstance(value, Mapping):
        return None
    return Address(**{key: str(value.get(key, "")) for key in Address.__dataclass_fields__})


def order_from_dict(payload: Mapping[str, Any]) -> Order:
    created_at = parse_timestamp(payload.get("created_at"))
    updated_at = parse_timestamp(payload.get("updated_at"))
    if created_at is None or updated_at is None:
        raise ValueError("stored order is missing its timestamps")

    return Order(
        id=str(payload["id"]),
        order_number=str(payload["order_number"]),
        customer_name=str(payload["customer_name"]),
        customer_email=str(payload["customer_email"]),
        phone=str(payload.get("phone", "")),
        status=str(payload["status"]),
        fulfillment_status=str(payload["fulfillment_status"]),
        financial_status=str(payload["financial_status"]),
        payment_status=str(payload["payment_status"]),
        total=float(payload["total"]),
        currency=str(payload["currency"]),
        items=int(payload["items"]),
        delivery_status=str(payload["delivery_status"]),
        tags=tuple(str(tag) for tag in payload.get("tags", [])),
        channel=str(payload["channel"]),
        delivery_method=str(payload["delivery_method"]),
        created_at=created_at,
        updated_at=updated_at,
        line_items=tuple(LineItem(**item) for item in payload.get("line_items", [])),
        shipping_address=_address_from_dict(payload.get("shipping_address")),
        billing_address=_address_from_dict(payload.get("billing_address")),
        highlight=payload.get("highlight"),
    )


def chunk_to_dict(chunk: Chunk) -> dict[str, Any]:
    return {"index": chunk.index, "orders": [order_to_dict(order) for order in chunk.orders]}


def chunk_from_dict(payload: Mapping[str, Any]) -> Chunk:
    orders = payload.get("orders")
    if not isinstance(orders, list):
        raise ValueError("stored chunk is missing its orders list")
    return Chunk(
        index=int(payload["index"]),
        orders=tuple(order_from_dict(order) for order in orders),
    )


def parsed_query_to_dict(parsed: ParsedQuery) -> dict[str, Any]:
    return {
        "is_valid": parsed.is_valid,
        "error": parsed.error,
        "conditions": [_condition_to_dict(condition) for condition in parsed.conditions],
    }


def _condition_to_dict(condition: ParsedCondition) -> dict[str, Any]:
    return {
        "column": condition.column,
        "operator": condition.operator,
        "value": condition.value,
        "connector": condition.connector,
    }
