from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")

ORDER_STATUSES = (
    "paid",
    "unpaid",
    "refunded",
    "pending",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
)
FULFILLMENT_STATUSES = ("unfulfilled", "fulfilled", "partial")
FINANCIAL_STATUSES = ("paid", "pending", "refunded")

Connector = Literal["AND", "OR"]

CONTAINS = "contains"
COMPARISON_OPERATORS = ("<=", ">=", "!=", "<", ">", "=")


@dataclass(frozen=True)
class LineItem:
    id: str
    title: str
    quantity: int
    price: float
    sku: str
    variant_id: str


@dataclass(frozen=True)
class Address:
    first_name: str
    last_name: str
    address1: str
    address2: str
    city: str
    province: str
    country: str
    zip: str
    phone: str


@dataclass(frozen=True)
class Order:
    id: str
    order_number: str
    customer_name: str
    customer_email: str
    status: str
    fulfillment_status: str
    financial_status: str
    payment_status: str
    total: float
    currency: str
    items: int
    delivery_status: str
    tags: tuple[str, ...]
    channel: str
    delivery_method: str
    created_at: datetime
    updated_at: datetime
    phone: str = ""
    line_items: tuple[LineItem, ...] = ()
    shipping_address: Address | None = None
    billing_address: Address | None = None
    highlight: Mapping[str, Any] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Order id must not be empty")


@dataclass(frozen=True)
class Chunk:
    index: int
    orders: tuple[Order, ...]

    def __len__(self) -> int:
        return len(self.orders)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    fetched_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.fetched_at < ttl_seconds


@dataclass(frozen=True)
class ParsedCondition:
    column: str
    operator: str
    value: str | float
    connector: Connector | None = None


@dataclass(frozen=True)
class ParsedQuery:
    conditions: tuple[ParsedCondition, ...] = ()
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        return len(self.conditions) > 0


@dataclass(frozen=True)
class SearchHit:
    raw: Mapping[str, Any]

    def _text(self, *keys: str) -> str:
        for key in keys:
            value = self.raw.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
        return ""

    @property
    def object_id(self) -> str:
        return self._text("objectID", "id")

    @property
    def order_number(self) -> str:
        return self._text("order_number", "orderNumber", "name")

    @property
    def customer_first_name(self) -> str:
        return self._text("customer.first_name", "customerName")

    @property
    def customer_last_name(self) -> str:
        return self._text("customer.last_name")

    @property
    def customer_name(self) -> str:
        return " ".join(
            part for part in (self.customer_first_name, self.customer_last_name) if part
        )

    @property
    def customer_email(self) -> str:
        return self._text("customer.email", "customerEmail", "email")

    @property
    def highlight(self) -> Mapping[str, Any] | None:
        value = self.raw.get("_highlightResult")
        return value if isinstance(value, Mapping) else None


@dataclass(frozen=True)
class PageResult:
    orders: tuple[Order, ...]
    total_chunks: int
    current_chunk: int
    has_more: bool
    page: int
    corrected_from: int | None = None
    is_placeholder: bool = False
    notice: str | None = None


@dataclass(frozen=True)
class AllOrdersResult:
    orders: tuple[Order, ...]
    total_chunks: int
    failed_chunks: tuple[int, ...] = ()

    @property
    def total_orders(self) -> int:
        return len(self.orders)
