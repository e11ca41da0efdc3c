from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from order_console.config import get_settings
from order_console.db import Base, get_engine
from order_console.main import app, get_order_service
from order_console.services.orders.types import Order


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_order_service.cache_clear()
    yield
    app.dependency_overrides.clear()
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_order_service.cache_clear()


@pytest.fixture
def sqlite_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    sqlite_db_path = tmp_path / "api-tests.db"
    monkeypatch.setenv("API_DATABASE_URL", f"sqlite+pysqlite:///{sqlite_db_path}")
    monkeypatch.setenv("API_DB_ECHO", "false")
    return sqlite_db_path


@pytest.fixture
def client(sqlite_env: Path) -> Iterator[TestClient]:
    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    engine.dispose()


@pytest.fixture
def make_order() -> Callable[..., Order]:
    def _make_order(order_id: str, **overrides: Any) -> Order:
        created_at = overrides.pop("created_at", datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc))
        fields: dict[str, Any] = {
            "id": order_id,
            "order_number": f"#INK{order_id}",
            "customer_name": "Alex Smith",
            "customer_email": f"customer{order_id}@example.com",
            "status": "paid",
            "fulfillment_status": "fulfilled",
            "financial_status": "paid",
            "payment_status": "paid",
            "total": 100.0,
            "currency": "INR",
            "items": 1,
            "delivery_status": "Tracking added",
            "tags": (),
            "channel": "Shopify",
            "delivery_method": "Standard Shipping",
            "created_at": created_at,
            "updated_at": overrides.pop("updated_at", created_at),
        }
        fields.update(overrides)
        return Order(**fields)

    return _make_order
