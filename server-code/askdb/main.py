# =========================
# askdb/main.py
# =========================
from __future__ import annotations

import logging
import os
import signal
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from askdb import deps
from askdb.core.db_health import ConnectionHealth
from askdb.core.errors import SchemaUnavailableError
from askdb.docs import create_app
from askdb.routers import health, query, schema

_settings = deps.settings()

logging.basicConfig(
    level=getattr(logging, _settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Quiet noisy third-party loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _shutdown_on_fatal(health: ConnectionHealth) -> None:
    logger.critical("Database is unusable (%s); shutting down", health.error)
    os.kill(os.getpid(), signal.SIGTERM)


@asynccontextmanager
async def lifespan(app: FastAPI):
    monitor = deps.health_monitor()
    monitor.on_fatal = _shutdown_on_fatal
    monitor.start()

    cache = deps.schema_cache()
    if _settings.WARM_SCHEMA_ON_STARTUP:
        try:
            snap = await cache.get_snapshot()
            logger.info("Schema ready: %d tables (partial=%s)", snap.total_tables, snap.partial)
        except SchemaUnavailableError as e:
            logger.warning("Schema warm-up failed; first request will retry: %s", e)
    try:
        yield
    finally:
        await monitor.stop()
        await deps.pipeline().aclose()
        await cache.aclose()
        await deps.oracle().aclose()
        await deps.engine().dispose()


app = create_app(_settings, lifespan=lifespan)

# CORS (dev-open; tighten for prod)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(query.router)
app.include_router(schema.router)
