from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, timezone
import math
from typing import Any

from order_console.services.orders.types import (
    FINANCIAL_STATUSES,
    FULFILLMENT_STATUSES,
    ORDER_STATUSES,
    Address,
    LineItem,
    Order,
    SearchHit,
)

DEFAULT_CURRENCY = "INR"
DEFAULT_CHANNEL = "Shopify"
DEFAULT_DELIVERY_METHOD = "Standard Shipping"


class NormalizationError(ValueError):
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _nested(raw: Mapping[str, Any], parent: str, key: str) -> Any:
    container = raw.get(parent)
    if isinstance(container, Mapping):
        return container.get(key)
    return None


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value).strip()


def _number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(parsed):
        return 0.0
    return parsed


def _quantity(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(parsed):
        raise NormalizationError(f"line item quantity must be finite, got {value!r}")
    return int(parsed)


def _vocabulary(value: Any, vocabulary: tuple[str, ...], default: str) -> str:
    normalized = _text(value).lower()
    return normalized if normalized in vocabulary else default


def map_order_status(value: Any, default: str = "paid") -> str:
    return _vocabulary(value, ORDER_STATUSES, default)


def map_fulfillment_status(value: Any, default: str = "fulfilled") -> str:
    return _vocabulary(value, FULFILLMENT_STATUSES, default)


def map_financial_status(value: Any, default: str = "paid") -> str:
    return _vocabulary(value, FINANCIAL_STATUSES, default)


def delivery_status_for(fulfillment_status: str) -> str:
    return "Tracking added" if fulfillment_status == "fulfilled" else "Pending"


def parse_tags(value: Any) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(str(tag).strip() for tag in value if str(tag).strip())
    if isinstance(value, str):
        return tuple(tag.strip() for tag in value.split(",") if tag.strip())
    return ()


def _line_item(item: Any, *, fallback_id: str) -> LineItem:
    if not isinstance(item, Mapping):
        raise NormalizationError(f"line item must be an object, got {type(item).__name__}")

    return LineItem(
        id=_text(item.get("id")) or fallback_id,
        title=_text(_first(item, "title", "name"), "Unknown Product"),
        quantity=_quantity(item.get("quantity", 1)),
        price=_number(item.get("price")),
        sku=_text(item.get("sku")),
        variant_id=_text(_first(item, "variant_id", "variantId")),
    )


def _address(value: Any) -> Address | None:
    if not isinstance(value, Mapping):
        return None

    return Address(
        first_name=_text(value.get("first_name")),
        last_name=_text(value.get("last_name")),
        address1=_text(value.get("address1")),
        address2=_text(value.get("address2")),
        city=_text(value.get("city")),
        province=_text(value.get("province")),
        country=_text(value.get("country")),
        zip=_text(value.get("zip")),
        phone=_text(value.get("phone")),
    )


def _customer_name(raw: Mapping[str, Any]) -> str:
    first_name = _text(_nested(raw, "customer", "first_name"))
    last_name = _text(_nested(raw, "customer", "last_name"))
    full_name = " ".join(part for part in (first_name, last_name) if part)
    if full_name:
        return full_name
    return _text(_first(raw, "customer_name", "customerName"))


def order_from_raw(raw: Any, *, fallback_id: str) -> Order:
    """Map one upstream order record onto an Order.

    Absent fields take their defaults; a record that is not an object, or whose
    nested structures are of the wrong shape, raises NormalizationError.
    """
    if not isinstance(raw, Mapping):
        raise NormalizationError(f"order record must be an object, got {type(raw).__name__}")

    now = utc_now()
    financial_status = map_financial_status(
        _first(raw, "financial_status", "financialStatus"), default="pending"
    )
    fulfillment_status = map_fulfillment_status(
        _first(raw, "fulfillment_status", "fulfillmentStatus"), default="unfulfilled"
    )

    raw_line_items = raw.get("line_items")
    line_items: tuple[LineItem, ...] = ()
    if isinstance(raw_line_items, list):
        line_items = tuple(
            _line_item(item, fallback_id=f"{fallback_id}-item-{position}")
            for position, item in enumerate(raw_line_items)
        )
    elif raw_line_items is not None:
        raise NormalizationError("line_items must be a list")

    shipping_lines = raw.get("shipping_lines")
    shipping_title = None
    if isinstance(shipping_lines, list) and shipping_lines and isinstance(shipping_lines[0], Mapping):
        shipping_title = shipping_lines[0].get("title")

    order_id = _text(_first(raw, "id", "order_id", "gid")) or fallback_id

    return Order(
        id=order_id,
        order_number=_text(_first(raw, "order_number", "orderNumber", "name")),
        customer_name=_customer_name(raw),
        customer_email=_text(
            _nested(raw, "customer", "email") or _first(raw, "customer_email", "customerEmail")
        ),
        phone=_text(_nested(raw, "customer", "phone") or raw.get("phone")),
        status=financial_status,
        fulfillment_status=fulfillment_status,
        financial_status=financial_status,
        payment_status=financial_status,
        total=_number(_first(raw, "total_price", "totalPrice", "total")),
        currency=_text(raw.get("currency")) or DEFAULT_CURRENCY,
        items=len(line_items) if isinstance(raw_line_items, list) else 1,
        delivery_status=delivery_status_for(fulfillment_status),
        tags=parse_tags(raw.get("tags")),
        channel=_text(_first(raw, "source_name", "sourceName", "channel")) or DEFAULT_CHANNEL,
        delivery_method=_text(shipping_title or _first(raw, "delivery_method", "deliveryMethod"))
        or DEFAULT_DELIVERY_METHOD,
        created_at=parse_timestamp(_first(raw, "created_at", "createdAt")) or now,
        updated_at=parse_timestamp(_first(raw, "updated_at", "updatedAt")) or now,
        line_items=line_items,
        shipping_address=_address(raw.get("shipping_address")),
        billing_address=_address(raw.get("billing_address")),
    )


def order_from_hit(hit: SearchHit, *, fallback_id: str) -> Order:
    """Best-effort Order built only from a search hit's own fields."""
    raw = hit.raw
    now = utc_now()
    financial_status = map_financial_status(raw.get("financial_status"))
    fulfillment_status = map_fulfillment_status(raw.get("fulfillment_status"))

    shipping_lines = raw.get("shipping_lines")
    shipping_title = None
    if isinstance(shipping_lines, list) and shipping_lines and isinstance(shipping_lines[0], Mapping):
        shipping_title = shipping_lines[0].get("title")

    return Order(
        id=hit.object_id or fallback_id,
        order_number=hit.order_number,
        customer_name=hit.customer_name,
        customer_email=hit.customer_email,
        phone=_text(_first(raw, "customer.phone", "phone")),
        status=map_order_status(raw.get("financial_status")),
        fulfillment_status=fulfillment_status,
        financial_status=financial_status,
        payment_status=financial_status,
        total=_number(raw.get("total_price")),
        currency=_text(raw.get("currency")) or DEFAULT_CURRENCY,
        items=0,
        delivery_status=delivery_status_for(fulfillment_status),
        tags=parse_tags(raw.get("tags")),
        channel=_text(raw.get("source_name")) or DEFAULT_CHANNEL,
        delivery_method=_text(shipping_title) or DEFAULT_DELIVERY_METHOD,
        created_at=parse_timestamp(raw.get("created_at")) or now,
        updated_at=parse_timestamp(raw.get("updated_at")) or now,
        highlight=hit.highlight,
    )
