from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date, timezone
import logging
import re

from order_console.services.orders.normalize import order_from_hit
from order_console.services.orders.search_client import SearchClient
from order_console.services.orders.types import Order, SearchHit

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class AdvancedFilters:
    order_statuses: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    channels: tuple[str, ...] = ()
    price_min: float | None = None
    price_max: float | None = None
    date_start: date | None = None
    date_end: date | None = None

    @property
    def has_facets(self) -> bool:
        return bool(self.order_statuses or self.tags or self.channels)

    @property
    def is_active(self) -> bool:
        return self.has_facets or any(
            bound is not None
            for bound in (self.price_min, self.price_max, self.date_start, self.date_end)
        )

    def remote_query(self) -> str:
        groups = [
            " OR ".join(term.lower() for term in terms)
            for terms in (self.order_statuses, self.tags, self.channels)
            if terms
        ]
        return " AND ".join(groups)

    def matches_facets(self, order: Order) -> bool:
        if self.order_statuses:
            statuses = {status.lower() for status in self.order_statuses}
            if order.status.lower() not in statuses:
                return False
        if self.tags:
            wanted = {tag.lower() for tag in self.tags}
            if not any(tag.lower() in wanted for tag in order.tags):
                return False
        if self.channels:
            channels = {channel.lower() for channel in self.channels}
            if order.channel.lower() not in channels:
                return False
        return True

    def matches_ranges(self, order: Order) -> bool:
        if self.price_min is not None and order.total < self.price_min:
            return False
        if self.price_max is not None and order.total > self.price_max:
            return False

        day = order.created_at.astimezone(timezone.utc).date()
        if self.date_start is not None and day < self.date_start:
            return False
        if self.date_end is not None and day > self.date_end:
            return False
        return True


def _digits(value: str) -> str:
    return _NON_DIGITS.sub("", value)


class _LocalIndex:
    """Lookup tables over the local orders; the first order wins on key collisions."""

    def __init__(self, orders: Sequence[Order]) -> None:
        self.orders = orders
        self.by_id: dict[str, Order] = {}
        self.by_number: dict[str, Order] = {}
        self.by_digits: dict[str, Order] = {}
        self.by_email: dict[str, Order] = {}
        for order in orders:
            self.by_id.setdefault(order.id, order)
            number = order.order_number.lower()
            if number:
                self.by_number.setdefault(number, order)
                digits = _digits(number)
                if digits:
                    self.by_digits.setdefault(digits, order)
            if order.customer_email:
                self.by_email.setdefault(order.customer_email.lower(), order)

    def reconcile(self, hit: SearchHit) -> Order | None:
        object_id = hit.object_id
        if object_id and object_id in self.by_id:
            return self.by_id[object_id]

        number = hit.order_number.lower()
        if number:
            if number in self.by_number:
                return self.by_number[number]

            digits = _digits(number)
            if digits and digits in self.by_digits:
                return self.by_digits[digits]

            for order in self.orders:
                local_number = order.order_number.lower()
                if local_number and (local_number in number or number in local_number):
                    return order

        email = hit.customer_email.lower()
        if email:
            return self.by_email.get(email)
        return None


def local_substring_search(query: str, orders: Iterable[Order]) -> list[Order]:
    needle = query.strip().lower()
    if not needle:
        return []

    def _matches(order: Order) -> bool:
        fields = (
            order.order_number,
            order.customer_name,
            order.customer_email,
            order.status,
            order.fulfillment_status,
            order.financial_status,
            order.channel,
            order.delivery_method,
            *order.tags,
        )
        return any(needle in field.lower() for field in fields)

    return [order for order in orders if _matches(order)]


def _newest_first(orders: Iterable[Order]) -> list[Order]:
    return sorted(orders, key=lambda order: order.created_at, reverse=True)


class OrderSearch:
    def __init__(
        self,
        client: SearchClient,
        *,
        hits_per_page: int = 500,
        filter_hits_per_page: int = 1000,
    ) -> None:
        self._client = client
        self._hits_per_page = hits_per_page
        self._filter_hits_per_page = filter_hits_per_page

    def resolve_hits(self, hits: Sequence[SearchHit], local_orders: Sequence[Order]) -> list[Order]:
        """Turn search hits into orders, preferring the local copy of each order.

        A matched local order keeps all its fields and only gains the hit's
        highlight; an unmatched hit is synthesized from its own fields. Results
        are unique on ``(id, order_number)``.
        """
        index = _LocalIndex(local_orders)
        resolved: list[Order] = []
        seen: set[tuple[str, str]] = set()

        for position, hit in enumerate(hits):
            local = index.reconcile(hit)
            if local is not None:
                order = replace(local, highlight=hit.highlight)
            else:
                order = order_from_hit(hit, fallback_id=f"hit-{position}")

            key = (order.id, order.order_number)
            if key in seen:
                continue
            seen.add(key)
            resolved.append(order)

        return resolved

    async def search(self, query: str, local_orders: Sequence[Order]) -> list[Order]:
        normalized = query.strip().lower()
        if not normalized:
            return []

        try:
            hits = await self._client.search(normalized, hits_per_page=self._hits_per_page)
            results = self.resolve_hits(hits, local_orders)
        except Exception as exc:
            logger.warning("Remote search for %r failed; using local search: %r", normalized, exc)
            return local_substring_search(normalized, local_orders)

        logger.debug("Remote search for %r resolved %s order(s)", normalized, len(results))
        return results

    async def search_with_filters(
        self,
        filters: AdvancedFilters,
        local_orders: Sequence[Order],
    ) -> list[Order]:
        if not filters.is_active:
            return []

        candidates: list[Order] | None = None
        if filters.has_facets:
            query = filters.remote_query()
            try:
                hits = await self._client.search(query, hits_per_page=self._filter_hits_per_page)
                candidates = self.resolve_hits(hits, local_orders)
            except Exception as exc:
                logger.warning("Remote filter search for %r failed; filtering locally: %r", query, exc)

        if candidates is None:
            candidates = [order for order in local_orders if filters.matches_facets(order)]

        unique: dict[str, Order] = {}
        for order in candidates:
            if filters.matches_ranges(order):
                unique.setdefault(order.id, order)
        return _newest_first(unique.values())
