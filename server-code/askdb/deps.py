# askdb/deps.py
from __future__ import annotations
from functools import lru_cache
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from askdb.settings import Settings
from askdb.core.db_health import HealthMonitor
from askdb.core.db_retry import RetryPolicy
from askdb.core.oracle_client import OracleClient
from askdb.core.query_pipeline import QueryPipeline
from askdb.core.read_only_db_executor import ReadOnlyDbExecutor
from askdb.core.schema_cache import SchemaCache
from askdb.core.schema_catalog import SchemaIntrospector
from askdb.core.sql_synthesis import SqlSynthesizer


def async_url(url: str) -> str:
    """postgres:// and postgresql:// URLs are pointed at the asyncpg driver."""
    for prefix in ("postgresql+psycopg2://", "postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


@lru_cache(maxsize=1)
def settings() -> Settings:
    return Settings()


@lru_cache(maxsize=1)
def engine() -> AsyncEngine:
    s = settings()
    # Pre-ping keeps connections healthy over time
    return create_async_engine(
        async_url(s.DB_URL_RO),
        pool_size=s.DB_POOL_MIN_SIZE,
        max_overflow=max(0, s.DB_POOL_MAX_SIZE - s.DB_POOL_MIN_SIZE),
        pool_pre_ping=True,
    )


@lru_cache(maxsize=1)
def retry_policy() -> RetryPolicy:
    s = settings()
    return RetryPolicy(
        max_attempts=s.DB_RETRY_MAX_ATTEMPTS,
        base_delay_s=s.DB_RETRY_BASE_DELAY_MS / 1000.0,
        max_delay_s=s.DB_RETRY_MAX_DELAY_MS / 1000.0,
        jitter_s=s.DB_RETRY_JITTER_MS / 1000.0,
    )


@lru_cache(maxsize=1)
def db() -> ReadOnlyDbExecutor:
    s = settings()
    return ReadOnlyDbExecutor(
        engine=engine(),
        default_limit=s.DEFAULT_SQL_LIMIT,
        statement_timeout_ms=s.STATEMENT_TIMEOUT_MS,
        retry_policy=retry_policy(),
    )


@lru_cache(maxsize=1)
def schema_cache() -> SchemaCache:
    s = settings()
    introspector = SchemaIntrospector(
        db(),
        concurrency=s.SCHEMA_INTROSPECTION_CONCURRENCY,
        database_name=s.DB_NAME,
    )
    return SchemaCache(introspector, s.SCHEMA_CACHE_PATH, max_age_hours=s.SCHEMA_MAX_AGE_HOURS)


@lru_cache(maxsize=1)
def oracle() -> OracleClient:
    s = settings()
    return OracleClient(
        api_key=s.LLM_API_KEY,
        base_url=s.LLM_API_BASE_URL,
        model=s.LLM_MODEL,
        temperature=s.LLM_TEMPERATURE,
        max_tokens=s.LLM_MAX_TOKENS,
        timeout_s=s.LLM_TIMEOUT_S,
        auth_backoff_s=s.LLM_AUTH_BACKOFF_S,
    )


@lru_cache(maxsize=1)
def pipeline() -> QueryPipeline:
    s = settings()
    return QueryPipeline(
        schema_cache(),
        SqlSynthesizer(oracle()),
        db(),
        result_max_rows=s.RESULT_MAX_ROWS,
        chart_max_points=s.CHART_MAX_POINTS,
    )


@lru_cache(maxsize=1)
def health_monitor() -> HealthMonitor:
    return HealthMonitor(engine(), interval_s=settings().DB_HEALTH_CHECK_INTERVAL_S)
