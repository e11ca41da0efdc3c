import pytest

from order_console.config import get_settings

_ORDERS_ENV = (
    "ORDERS_BACKEND_URL",
    "ORDERS_CHUNK_SIZE",
    "ORDERS_CHUNK_TTL_SECONDS",
    "ORDERS_TOTAL_CHUNKS_TTL_SECONDS",
    "ORDERS_DEFAULT_TOTAL_CHUNKS",
    "ORDERS_CHUNK_MAX_ATTEMPTS",
    "ORDERS_SEARCH_HITS_PER_PAGE",
    "ORDERS_SEARCH_DEBOUNCE_SECONDS",
    "ORDERS_PERSIST_SNAPSHOTS",
    "API_LOG_LEVEL",
)


def test_orders_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ORDERS_ENV:
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings.backend_url == "https://brmh.in"
    assert settings.chunk_size == 500
    assert settings.chunk_ttl_seconds == 300.0
    assert settings.total_chunks_ttl_seconds == 600.0
    assert settings.default_total_chunks == 140
    assert settings.chunk_max_attempts == 3
    assert settings.search_hits_per_page == 500
    assert settings.search_debounce_seconds == 0.3
    assert settings.persist_snapshots is True
    assert settings.log_level == "INFO"


def test_orders_settings_read_env_and_apply_minimums(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ORDERS_BACKEND_URL", "http://localhost:9000")
    monkeypatch.setenv("ORDERS_CHUNK_MAX_ATTEMPTS", "0")
    monkeypatch.setenv("ORDERS_SEARCH_DEBOUNCE_SECONDS", "0.5")
    monkeypatch.setenv("ORDERS_PERSIST_SNAPSHOTS", "no")
    monkeypatch.setenv("API_LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.backend_url == "http://localhost:9000"
    assert settings.chunk_max_attempts == 1
    assert settings.search_debounce_seconds == 0.5
    assert settings.persist_snapshots is False
    assert settings.log_level == "DEBUG"
