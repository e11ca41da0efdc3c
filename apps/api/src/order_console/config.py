from dataclasses import dataclass
from functools import lru_cache
import logging
import os


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_echo: bool
    log_level: str
    backend_url: str
    cache_project: str
    search_project: str
    orders_table: str
    chunk_size: int
    chunk_ttl_seconds: float
    total_chunks_ttl_seconds: float
    default_total_chunks: int
    chunk_max_attempts: int
    retry_base_seconds: float
    chunk_timeout_seconds: float
    metadata_timeout_seconds: float
    search_timeout_seconds: float
    search_hits_per_page: int
    filter_hits_per_page: int
    search_debounce_seconds: float
    persist_snapshots: bool
    warm_batch_size: int
    warm_batch_delay_seconds: float


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv(
            "API_DATABASE_URL",
            "sqlite+pysqlite:///./data/order_console.db",
        ),
        db_echo=_to_bool(os.getenv("API_DB_ECHO"), default=False),
        log_level=os.getenv("API_LOG_LEVEL", "INFO").strip().upper(),
        backend_url=os.getenv("ORDERS_BACKEND_URL", "https://brmh.in"),
        cache_project=os.getenv("ORDERS_CACHE_PROJECT", "my-app"),
        search_project=os.getenv("ORDERS_SEARCH_PROJECT", "myProject"),
        orders_table=os.getenv("ORDERS_TABLE", "shopify-inkhub-get-orders"),
        chunk_size=_to_int(os.getenv("ORDERS_CHUNK_SIZE"), default=500, minimum=1),
        chunk_ttl_seconds=_to_float(
            os.getenv("ORDERS_CHUNK_TTL_SECONDS"), default=300.0, minimum=0.0
        ),
        total_chunks_ttl_seconds=_to_float(
            os.getenv("ORDERS_TOTAL_CHUNKS_TTL_SECONDS"), default=600.0, minimum=0.0
        ),
        default_total_chunks=_to_int(
            os.getenv("ORDERS_DEFAULT_TOTAL_CHUNKS"), default=140, minimum=1
        ),
        chunk_max_attempts=_to_int(
            os.getenv("ORDERS_CHUNK_MAX_ATTEMPTS"), default=3, minimum=1
        ),
        retry_base_seconds=_to_float(
            os.getenv("ORDERS_RETRY_BASE_SECONDS"), default=1.0, minimum=0.0
        ),
        chunk_timeout_seconds=_to_float(
            os.getenv("ORDERS_CHUNK_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
        metadata_timeout_seconds=_to_float(
            os.getenv("ORDERS_METADATA_TIMEOUT_SECONDS"), default=10.0, minimum=1.0
        ),
        search_timeout_seconds=_to_float(
            os.getenv("ORDERS_SEARCH_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
        search_hits_per_page=_to_int(
            os.getenv("ORDERS_SEARCH_HITS_PER_PAGE"), default=500, minimum=1
        ),
        filter_hits_per_page=_to_int(
            os.getenv("ORDERS_FILTER_HITS_PER_PAGE"), default=1000, minimum=1
        ),
        search_debounce_seconds=_to_float(
            os.getenv("ORDERS_SEARCH_DEBOUNCE_SECONDS"), default=0.3, minimum=0.0
        ),
        persist_snapshots=_to_bool(os.getenv("ORDERS_PERSIST_SNAPSHOTS"), default=True),
        warm_batch_size=_to_int(os.getenv("ORDERS_WARM_BATCH_SIZE"), default=10, minimum=1),
        warm_batch_delay_seconds=_to_float(
            os.getenv("ORDERS_WARM_BATCH_DELAY_SECONDS"), default=0.1, minimum=0.0
        ),
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
